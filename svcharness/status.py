"""Showing the status of configured services as reported by the daemon."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .client import connect_to_daemon
from .config import Config, ConfigError, load_config
from .protocol import (
    DetailedServiceInfo,
    Error,
    ListServices,
    ListServicesDetailed,
    ServiceList,
    ServiceListDetailed,
    ServiceStatus,
    StatusKind,
)

_FORMATS = ("table", "json")
_REFRESH_SECONDS = 2
_CLEAR_SCREEN = "\x1b[2J\x1b[1;1H"
_RESET = "\x1b[0m"
_GREY = "\x1b[90m"
_YELLOW = "\x1b[33m"
_GREEN = "\x1b[32m"
_RED = "\x1b[31m"

_BASIC = {
    StatusKind.STOPPED: ("stopped", _GREY, "-"),
    StatusKind.STARTING: ("starting", _YELLOW, "..."),
    StatusKind.RUNNING: ("running", _GREEN, "healthy"),
    StatusKind.UNHEALTHY: ("running", _RED, "unhealthy"),
}

_DETAILED = {
    StatusKind.STOPPED: ("stopped", _GREY),
    StatusKind.STARTING: ("starting", _YELLOW),
    StatusKind.RUNNING: ("running", _GREEN),
    StatusKind.UNHEALTHY: ("unhealthy", _RED),
    StatusKind.FAILED: ("failed", _RED),
}

_BASIC_HEADERS = ["SERVICE", "STATUS", "HEALTH"]
_DETAILED_HEADERS = [
    "SERVICE",
    "STATUS",
    "NETWORK",
    "PID/CONTAINER",
    "DEPENDENCIES",
    "ENDPOINTS",
]


class _Cell(str):
    """Table cell text that may carry a terminal colour."""

    color: str | None

    def __new__(cls, text: str, color: str | None = None) -> "_Cell":
        cell = super().__new__(cls, text)
        cell.color = color
        return cell


def _render(headers: Sequence[str], rows: Sequence[Sequence[str]], colored: bool) -> str:
    columns = list(zip(headers, *rows))
    widths = [max(len(cell) for cell in column) for column in columns]

    def border(fill: str) -> str:
        return "+" + "+".join(fill * (width + 2) for width in widths) + "+"

    def line(cells: Sequence[str]) -> str:
        parts = []
        for cell, width in zip(cells, widths):
            padding = " " * (width - len(cell))
            color = getattr(cell, "color", None)
            text = f"{color}{cell}{_RESET}" if colored and color else str(cell)
            parts.append(text + padding)
        return "| " + " | ".join(parts) + " |"

    lines = [border("-"), line(headers), border("=")]
    lines.extend(line(row) for row in rows)
    lines.append(border("-"))
    return "\n".join(lines)


def render_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Lay out headers and rows as a plain text table."""
    return _render(headers, rows, colored=False)


def basic_rows(statuses: Mapping[str, ServiceStatus], config: Config) -> list[list[str]]:
    """One (service, status, health) row per configured service, in config order."""
    rows: list[list[str]] = []
    for name in config.services:
        status = statuses.get(name)
        if status is None:
            text, color, health = _BASIC[StatusKind.STOPPED]
        elif status.kind is StatusKind.FAILED:
            text, color, health = "failed", _RED, status.message or ""
        else:
            text, color, health = _BASIC[status.kind]
        rows.append([_Cell(name), _Cell(text, color), _Cell(health)])
    return rows


def _network_cell(info: DetailedServiceInfo | None) -> str:
    if info is None or info.network_info is None:
        return "-"
    net = info.network_info
    return net.ip if net.port is None else f"{net.ip}:{net.port}"


def _process_cell(info: DetailedServiceInfo | None) -> str:
    if info is None:
        return "-"
    if info.pid is not None:
        return f"PID {info.pid}"
    if info.container_id is not None:
        return f"Container {info.container_id[:12]}"
    return "-"


def _endpoints_cell(info: DetailedServiceInfo | None) -> str:
    if info is None or not info.endpoints:
        return "-"
    return ", ".join(f"{key}:{value}" for key, value in info.endpoints.items())


def detailed_rows(services: Iterable[DetailedServiceInfo], config: Config) -> list[list[str]]:
    """One detailed row per configured service, in config order."""
    by_name = {info.name: info for info in services}
    rows: list[list[str]] = []
    for name, service in config.services.items():
        info = by_name.get(name)
        text, color = ("unknown", _GREY) if info is None else _DETAILED[info.status.kind]
        dependencies = ", ".join(service.dependencies) or "-"
        rows.append(
            [
                _Cell(name),
                _Cell(text, color),
                _Cell(_network_cell(info)),
                _Cell(_process_cell(info)),
                _Cell(dependencies),
                _Cell(_endpoints_cell(info)),
            ]
        )
    return rows


def _detailed_json(info: DetailedServiceInfo) -> dict[str, Any]:
    net = info.network_info
    return {
        "name": info.name,
        "status": info.status.to_json(),
        "network_info": None
        if net is None
        else {
            "ip": net.ip,
            "port": net.port,
            "hostname": net.hostname,
            "ports": list(net.ports),
        },
        "endpoints": dict(info.endpoints),
        "pid": info.pid,
        "container_id": info.container_id,
        "start_time": info.start_time,
        "dependencies": list(info.dependencies),
    }


async def _run_once(config_path: str | Path, fmt: str, detailed: bool) -> None:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise ConfigError(f"Failed to parse configuration: {exc}") from exc

    colored = sys.stdout.isatty()
    async with await connect_to_daemon() as daemon:
        if detailed:
            reply = await daemon.send_request(ListServicesDetailed())
            if isinstance(reply, Error):
                raise RuntimeError(f"Failed to get detailed service list: {reply.message}")
            if not isinstance(reply, ServiceListDetailed):
                raise RuntimeError("Unexpected response from daemon")
            if fmt == "json":
                print(json.dumps([_detailed_json(s) for s in reply.services], indent=2))
            else:
                rows = detailed_rows(reply.services, config)
                print(_render(_DETAILED_HEADERS, rows, colored))
        else:
            reply = await daemon.send_request(ListServices())
            if isinstance(reply, Error):
                raise RuntimeError(f"Failed to get service list: {reply.message}")
            if not isinstance(reply, ServiceList):
                raise RuntimeError("Unexpected response from daemon")
            if fmt == "json":
                encoded = {name: status.to_json() for name, status in reply.services.items()}
                print(json.dumps(encoded, indent=2))
            else:
                rows = basic_rows(reply.services, config)
                print(_render(_BASIC_HEADERS, rows, colored))


async def _watch(config_path: str | Path, fmt: str, detailed: bool) -> None:
    print("Watch mode - Press Ctrl+C to exit\n")
    while True:
        print(_CLEAR_SCREEN, end="")
        try:
            await _run_once(config_path, fmt, detailed)
        except Exception as exc:
            print(f"Error: {exc}", file=sys.stderr)
        await asyncio.sleep(_REFRESH_SECONDS)


async def run(
    config_path: str | Path, fmt: str = "table", watch: bool = False, detailed: bool = False
) -> None:
    """Print service status once, or keep refreshing it in watch mode."""
    if fmt not in _FORMATS:
        raise ValueError(f"Invalid format: {fmt}. Must be 'table' or 'json'")
    if watch:
        await _watch(config_path, fmt, detailed)
    else:
        await _run_once(config_path, fmt, detailed)