"""Service configuration: data model and YAML loading."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

_MAX_PORT = 0xFFFF
_DEFAULT_INTERVAL = 10
_DEFAULT_TIMEOUT = 5
_DEFAULT_RETRIES = 3

PortMapping = Union[int, str]


class ConfigError(ValueError):
    """Raised when a configuration cannot be read or is malformed."""


@dataclass
class DockerService:
    """A service run from a container image."""

    image: str
    ports: list[PortMapping] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    command: list[str] | None = None
    entrypoint: list[str] | None = None


@dataclass
class ProcessService:
    """A service run as a local process."""

    binary: str
    args: list[str] = field(default_factory=list)
    working_dir: str | None = None
    user: str | None = None


@dataclass
class HttpCheck:
    url: str


@dataclass
class TcpCheck:
    port: int
    host: str | None = None


@dataclass
class CommandCheck:
    command: str
    args: list[str] = field(default_factory=list)


@dataclass
class HealthCheck:
    """How and how often a service's health is probed (times in seconds)."""

    check: HttpCheck | TcpCheck | CommandCheck
    interval: int = _DEFAULT_INTERVAL
    timeout: int = _DEFAULT_TIMEOUT
    retries: int = _DEFAULT_RETRIES


@dataclass
class Service:
    """One service definition."""

    kind: DockerService | ProcessService
    network: str
    env: dict[str, str] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    health_check: HealthCheck | None = None
    startup_timeout: int | None = None
    shutdown_timeout: int | None = None


@dataclass
class Config:
    """A whole configuration file."""

    version: str
    name: str | None = None
    description: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    networks: dict[str, dict[str, Any]] = field(default_factory=dict)
    services: dict[str, Service] = field(default_factory=dict)


def host_port(mapping: PortMapping) -> int | None:
    """Return the host side of a port mapping, or None if it has none."""
    if isinstance(mapping, int):
        return mapping
    host, sep, _ = mapping.partition(":")
    if not sep or not host.isdigit():
        return None
    port = int(host)
    return port if port <= _MAX_PORT else None


def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] is None:
        raise ConfigError(f"{where}: missing field '{key}'")
    return data[key]


def _string(value: Any, key: str, where: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"{where}: field '{key}' must be a string")
    return str(value)


def _optional_string(data: Mapping[str, Any], key: str, where: str) -> str | None:
    value = data.get(key)
    return None if value is None else _string(value, key, where)


def _integer(value: Any, key: str, where: str, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{where}: field '{key}' must be a non-negative integer")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{where}: field '{key}' must be at most {maximum}")
    return value


def _optional_integer(data: Mapping[str, Any], key: str, where: str) -> int | None:
    value = data.get(key)
    return None if value is None else _integer(value, key, where)


def _mapping(value: Any, key: str, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{where}: field '{key}' must be a mapping")
    return value


def _string_list(value: Any, key: str, where: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{where}: field '{key}' must be a list")
    return [_string(item, key, where) for item in value]


def _command_line(data: Mapping[str, Any], key: str, where: str) -> list[str] | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return shlex.split(value)
    return _string_list(value, key, where)


def _env_value(value: Any, key: str, where: str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return _string(value, key, where)


def _parse_port(value: Any, where: str) -> PortMapping:
    if isinstance(value, str):
        return value
    return _integer(value, "ports", where, _MAX_PORT)


def _parse_docker(raw: Mapping[str, Any], where: str) -> DockerService:
    ports = raw.get("ports") or []
    if not isinstance(ports, list):
        raise ConfigError(f"{where}: field 'ports' must be a list")
    return DockerService(
        image=_string(_require(raw, "image", where), "image", where),
        ports=[_parse_port(port, where) for port in ports],
        volumes=_string_list(raw.get("volumes"), "volumes", where),
        command=_command_line(raw, "command", where),
        entrypoint=_command_line(raw, "entrypoint", where),
    )


def _parse_process(raw: Mapping[str, Any], where: str) -> ProcessService:
    return ProcessService(
        binary=_string(_require(raw, "binary", where), "binary", where),
        args=_string_list(raw.get("args"), "args", where),
        working_dir=_optional_string(raw, "working_dir", where),
        user=_optional_string(raw, "user", where),
    )


_SERVICE_KINDS = {"docker": _parse_docker, "process": _parse_process}


def _parse_health_check(raw: Any, where: str) -> HealthCheck:
    raw = _mapping(raw, "health_check", where)
    where = f"{where} health_check"
    kinds = [key for key in ("http", "tcp", "command") if key in raw]
    if len(kinds) != 1:
        raise ConfigError(f"{where}: exactly one of 'http', 'tcp' or 'command' is required")
    (kind,) = kinds
    check: HttpCheck | TcpCheck | CommandCheck
    if kind == "http":
        check = HttpCheck(_string(raw["http"], "http", where))
    elif kind == "tcp":
        tcp = raw["tcp"]
        if isinstance(tcp, Mapping):
            check = TcpCheck(
                port=_integer(_require(tcp, "port", where), "port", where, _MAX_PORT),
                host=_optional_string(tcp, "host", where),
            )
        else:
            check = TcpCheck(port=_integer(tcp, "tcp", where, _MAX_PORT))
    else:
        check = CommandCheck(
            command=_string(raw["command"], "command", where),
            args=_string_list(raw.get("args"), "args", where),
        )
    interval = raw.get("interval")
    timeout = raw.get("timeout")
    retries = raw.get("retries")
    return HealthCheck(
        check=check,
        interval=_DEFAULT_INTERVAL if interval is None else _integer(interval, "interval", where),
        timeout=_DEFAULT_TIMEOUT if timeout is None else _integer(timeout, "timeout", where),
        retries=_DEFAULT_RETRIES if retries is None else _integer(retries, "retries", where),
    )


def _parse_service(name: str, raw: Any) -> Service:
    where = f"service '{name}'"
    raw = _mapping(raw, name, "services")
    kind_name = _string(_require(raw, "type", where), "type", where)
    parse_kind = _SERVICE_KINDS.get(kind_name)
    if parse_kind is None:
        raise ConfigError(f"{where}: unknown service type '{kind_name}'")
    env = _mapping(raw.get("env"), "env", where)
    health = raw.get("health_check")
    return Service(
        kind=parse_kind(raw, where),
        network=_string(_require(raw, "network", where), "network", where),
        env={str(key): _env_value(value, str(key), where) for key, value in env.items()},
        dependencies=_string_list(raw.get("dependencies"), "dependencies", where),
        health_check=None if health is None else _parse_health_check(health, where),
        startup_timeout=_optional_integer(raw, "startup_timeout", where),
        shutdown_timeout=_optional_integer(raw, "shutdown_timeout", where),
    )


def parse_config(data: Any) -> Config:
    """Build a Config from already-parsed YAML data."""
    if not isinstance(data, Mapping):
        raise ConfigError("configuration must be a mapping")
    where = "configuration"
    networks = _mapping(data.get("networks"), "networks", where)
    services = _mapping(data.get("services"), "services", where)
    return Config(
        version=_string(_require(data, "version", where), "version", where),
        name=_optional_string(data, "name", where),
        description=_optional_string(data, "description", where),
        settings=dict(_mapping(data.get("settings"), "settings", where)),
        networks={
            str(name): dict(_mapping(body, str(name), "networks"))
            for name, body in networks.items()
        },
        services={str(name): _parse_service(str(name), body) for name, body in services.items()},
    )


def load_config(path: str | Path) -> Config:
    """Read and parse a YAML configuration file."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return parse_config(data)