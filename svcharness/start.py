"""Starting services through the daemon in dependency order."""

from __future__ import annotations

import asyncio
import os
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .client import DaemonConnectionError, connect_to_daemon
from .config import (
    CommandCheck,
    Config,
    ConfigError,
    DockerService,
    HealthCheck,
    HttpCheck,
    TcpCheck,
    load_config,
)
from .dependencies import topological_sort
from .protocol import (
    Error,
    GetServiceStatus,
    ServiceStarted,
    StartService,
    StatusKind,
    StatusReply,
    Success,
)

_DEFAULT_STARTUP_TIMEOUT = 60
_POLL_INTERVAL = 0.5
_REFERENCE = re.compile(r"\$\{([^}]+)\}")
_SEND_ERRORS = (DaemonConnectionError, OSError)


def _eprint(*args: Any) -> None:
    print(*args, file=sys.stderr)


@dataclass
class _Endpoint:
    ip: str
    port: int | None
    hostname: str


@dataclass
class _ResolutionContext:
    """Values that ``${...}`` references in a service definition resolve to."""

    environ: Mapping[str, str]
    services: dict[str, _Endpoint] = field(default_factory=dict)

    def add_service(self, name: str, ip: str, port: int | None, hostname: str) -> None:
        self.services[name] = _Endpoint(ip, port, hostname)

    def _lookup(self, reference: str) -> str:
        reference = reference.strip()
        if "." not in reference:
            if reference not in self.environ:
                raise ConfigError(f"environment variable '{reference}' is not set")
            return self.environ[reference]
        service_name, _, attribute = reference.partition(".")
        endpoint = self.services.get(service_name)
        if endpoint is None:
            raise ConfigError(
                f"reference '{reference}': service '{service_name}' has not been started"
            )
        if attribute == "ip":
            return endpoint.ip
        if attribute in ("host", "hostname"):
            return endpoint.hostname
        if attribute == "port":
            if endpoint.port is None:
                raise ConfigError(
                    f"reference '{reference}': service '{service_name}' exposes no port"
                )
            return str(endpoint.port)
        raise ConfigError(f"reference '{reference}': unknown attribute '{attribute}'")

    def resolve(self, value: Any) -> Any:
        if isinstance(value, str):
            return _REFERENCE.sub(lambda match: self._lookup(match.group(1)), value)
        if isinstance(value, dict):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        return value


def _health_config(health: HealthCheck) -> dict[str, Any]:
    check = health.check
    if isinstance(check, HttpCheck):
        spec: dict[str, Any] = {"type": "http", "url": check.url}
    elif isinstance(check, TcpCheck):
        spec = {"type": "tcp", "port": check.port, "host": check.host}
    else:
        assert isinstance(check, CommandCheck)
        spec = {"type": "command", "command": check.command, "args": list(check.args)}
    spec.update(interval=health.interval, timeout=health.timeout, retries=health.retries)
    return spec


def _service_config(config: Config, name: str, context: _ResolutionContext) -> dict[str, Any]:
    service = config.services.get(name)
    if service is None:
        raise ConfigError(f"Service '{name}' not found in configuration")
    kind = service.kind
    if isinstance(kind, DockerService):
        target: dict[str, Any] = {
            "type": "docker",
            "image": kind.image,
            "ports": [str(port) for port in kind.ports],
            "volumes": list(kind.volumes),
            "command": None if kind.command is None else list(kind.command),
            "entrypoint": None if kind.entrypoint is None else list(kind.entrypoint),
        }
    else:
        target = {
            "type": "process",
            "binary": kind.binary,
            "args": list(kind.args),
            "working_dir": kind.working_dir,
            "user": kind.user,
        }
    raw = {
        "name": name,
        "network": service.network,
        "target": target,
        "env": dict(service.env),
        "dependencies": list(service.dependencies),
        "health_check": None
        if service.health_check is None
        else _health_config(service.health_check),
    }
    return context.resolve(raw)


@dataclass
class StartOutcome:
    """What happened when starting a set of services."""

    ordered: list[str] = field(default_factory=list)
    started: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def not_started(self) -> list[str]:
        """Services neither started nor failed, skipped because of an earlier failure."""
        failed = {name for name, _ in self.failures}
        return [n for n in self.ordered if n not in self.started and n not in failed]


async def _wait_until_running(client: Any, name: str, timeout: float) -> None:
    print("  Waiting for health check...", end="", flush=True)
    began = time.monotonic()
    while True:
        if time.monotonic() - began > timeout:
            print(" ⚠️  Timeout")
            return
        try:
            reply = await client.send_request(GetServiceStatus(name))
        except _SEND_ERRORS:
            return
        if not isinstance(reply, StatusReply):
            return
        if reply.status.kind is StatusKind.RUNNING:
            print(" ✓")
            return
        if reply.status.kind is StatusKind.FAILED:
            print(" ✗")
            _eprint(f"    Service failed: {reply.status.message}")
            return
        await asyncio.sleep(_POLL_INTERVAL)


def _print_summary(outcome: StartOutcome) -> None:
    print(f"\n{len(outcome.started)} services started successfully")
    if not outcome.failures:
        return
    _eprint(f"\n{len(outcome.failures)} services failed to start:")
    for name, error in outcome.failures:
        _eprint(f"  - {name}: {error}")
    skipped = outcome.not_started
    if skipped:
        _eprint(f"\n{len(skipped)} services were not started due to dependency failures:")
        for name in skipped:
            _eprint(f"  - {name}")


async def start_services(config: Config, client: Any, services: Iterable[str]) -> StartOutcome:
    """Start the services (all if none are named) and their dependencies, in order."""
    ordered = topological_sort(config, list(services))
    print(f"Starting {len(ordered)} services...")
    outcome = StartOutcome(ordered=list(ordered))
    context = _ResolutionContext(os.environ)

    for name in ordered:
        service = config.services.get(name)
        if service is None:
            raise ConfigError(f"Service '{name}' not found in configuration")

        print(f"Starting {name}...", end="", flush=True)
        try:
            service_config = _service_config(config, name, context)
        except ConfigError as exc:
            print(" ✗")
            _eprint(f"  Error: Failed to convert service config: {exc}")
            outcome.failures.append((name, str(exc)))
            continue

        try:
            response = await client.send_request(StartService(name, service_config))
        except _SEND_ERRORS as exc:
            print(" ✗")
            _eprint(f"  Error: {exc}")
            outcome.failures.append((name, str(exc)))
            break

        if isinstance(response, ServiceStarted):
            net = response.network_info
            context.add_service(name, net.ip, net.port, net.hostname)
        elif isinstance(response, Success):
            context.add_service(name, "127.0.0.1", None, f"{name}.local")
        elif isinstance(response, Error):
            print(" ✗")
            _eprint(f"  Error: {response.message}")
            outcome.failures.append((name, response.message))
            _eprint("  Aborting due to failure (dependent services cannot start)")
            break
        else:
            print(" ✗")
            _eprint("  Unexpected response from daemon")
            outcome.failures.append((name, "Unexpected response"))
            continue

        print(" ✓")
        outcome.started.append(name)
        if service.health_check is not None:
            timeout = (
                _DEFAULT_STARTUP_TIMEOUT
                if service.startup_timeout is None
                else service.startup_timeout
            )
            await _wait_until_running(client, name, timeout)

    _print_summary(outcome)
    return outcome


def service_endpoints(config: Config, names: Iterable[str]) -> list[tuple[str, str]]:
    """Return (service, address) pairs that the named services can be reached at."""
    endpoints: list[tuple[str, str]] = []
    for name in names:
        service = config.services.get(name)
        if service is None:
            continue
        kind = service.kind
        if isinstance(kind, DockerService):
            for mapping in kind.ports:
                if isinstance(mapping, int):
                    endpoints.append((name, f"http://localhost:{mapping}"))
                else:
                    host, sep, _ = mapping.partition(":")
                    if sep:
                        endpoints.append((name, f"http://localhost:{host}"))
        elif service.health_check is not None:
            check = service.health_check.check
            if isinstance(check, HttpCheck):
                endpoints.append((name, check.url))
            elif isinstance(check, TcpCheck):
                endpoints.append((name, f"tcp://localhost:{check.port}"))
    return endpoints


async def run(config_path: str | Path, services: Iterable[str] = ()) -> StartOutcome:
    """Start services from a configuration file through the daemon."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise ConfigError(f"Failed to parse configuration: {exc}") from exc

    async with await connect_to_daemon() as daemon:
        outcome = await start_services(config, daemon, services)

    if outcome.failures:
        raise RuntimeError(f"{len(outcome.failures)} services failed to start")
    if outcome.started:
        print("\nService endpoints:")
        for name, address in service_endpoints(config, outcome.started):
            print(f"  {name}: {address}")
    return outcome