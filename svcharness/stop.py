"""Stopping services through the daemon, dependents first."""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .client import DaemonConnectionError, connect_to_daemon
from .config import Config, ConfigError, load_config
from .dependencies import get_affected_services, reverse_topological_sort
from .protocol import (
    Error,
    GetServiceStatus,
    ListServices,
    ServiceList,
    ServiceStatus,
    StatusKind,
    StatusReply,
    StopService,
    Success,
)

_ACTIVE = {StatusKind.RUNNING, StatusKind.STARTING, StatusKind.UNHEALTHY}
_POLL_INTERVAL = 0.5
_SEND_ERRORS = (DaemonConnectionError, OSError)


def _eprint(*args: Any, **kwargs: Any) -> None:
    print(*args, file=sys.stderr, **kwargs)


@dataclass
class StopOutcome:
    """What happened when stopping a set of services."""

    ordered: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)
    aborted: bool = False


def running_services(statuses: Mapping[str, ServiceStatus]) -> list[str]:
    """Names of services that are running, starting or unhealthy."""
    return [name for name, status in statuses.items() if status.kind in _ACTIVE]


def select_services_to_stop(
    statuses: Mapping[str, ServiceStatus], requested: Iterable[str]
) -> list[str]:
    """The requested services that are running; all running ones if none are requested."""
    running = running_services(statuses)
    wanted = list(requested)
    if not wanted:
        return running
    return [name for name in wanted if name in running]


def _confirm() -> bool:
    _eprint("\nDo you want to continue? [y/N] ", end="", flush=True)
    answer = sys.stdin.readline()
    return answer.strip().lower() == "y"


async def _wait_until_stopped(client: Any, name: str, timeout: int) -> None:
    began = time.monotonic()
    while True:
        if int(time.monotonic() - began) > timeout:
            print("  ⚠️  Timeout waiting for service to stop")
            return
        try:
            reply = await client.send_request(GetServiceStatus(name))
        except _SEND_ERRORS:
            return
        if not isinstance(reply, StatusReply) or reply.status.kind is StatusKind.STOPPED:
            return
        await asyncio.sleep(_POLL_INTERVAL)


async def stop_services(
    config: Config,
    client: Any,
    services: Iterable[str],
    force: bool = False,
    timeout: int | None = None,
) -> StopOutcome:
    """Stop running services (all if none are named) and whatever depends on them."""
    reply = await client.send_request(ListServices())
    if isinstance(reply, Error):
        raise RuntimeError(f"Failed to get service list: {reply.message}")
    if not isinstance(reply, ServiceList):
        raise RuntimeError("Unexpected response from daemon")

    running = running_services(reply.services)
    to_stop = select_services_to_stop(reply.services, services)
    if not to_stop:
        print("No services to stop")
        return StopOutcome()

    affected = get_affected_services(config, to_stop)
    if affected and not force:
        _eprint("\n⚠️  WARNING: Stopping these services will affect:")
        for name in affected:
            _eprint(f"  - {name}")
        if not _confirm():
            print("Aborted")
            return StopOutcome(aborted=True)

    ordered = [n for n in reverse_topological_sort(config, to_stop) if n in running]
    print(f"Stopping {len(ordered)} services...")
    outcome = StopOutcome(ordered=ordered)

    for name in ordered:
        if name not in config.services:
            _eprint(f"Warning: Service '{name}' not found in configuration")
            continue

        print(f"Stopping {name}...", end="", flush=True)
        try:
            response = await client.send_request(StopService(name))
        except _SEND_ERRORS as exc:
            response = exc

        if isinstance(response, Success):
            print(" ✓")
            outcome.stopped.append(name)
            if timeout is not None:
                await _wait_until_stopped(client, name, timeout)
            continue

        print(" ✗")
        if isinstance(response, (Error, *_SEND_ERRORS)):
            message = response.message if isinstance(response, Error) else str(response)
            _eprint(f"  Error: {message}")
            outcome.failures.append((name, message))
            if not force:
                _eprint("  Aborting due to failure (use --force to continue)")
                break
        else:
            _eprint("  Unexpected response from daemon")
            outcome.failures.append((name, "Unexpected response"))

    print(f"\n{len(outcome.stopped)} services stopped successfully")
    if outcome.failures:
        _eprint(f"\n{len(outcome.failures)} services failed to stop:")
        for name, error in outcome.failures:
            _eprint(f"  - {name}: {error}")
    return outcome


async def run(
    config_path: str | Path,
    services: Iterable[str] = (),
    force: bool = False,
    timeout: int | None = None,
) -> StopOutcome:
    """Stop services from a configuration file through the daemon."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise ConfigError(f"Failed to parse configuration: {exc}") from exc

    async with await connect_to_daemon() as daemon:
        outcome = await stop_services(config, daemon, services, force, timeout)

    if outcome.failures:
        raise RuntimeError(f"{len(outcome.failures)} services failed to stop")
    return outcome