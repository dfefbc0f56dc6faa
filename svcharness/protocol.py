"""Messages exchanged between the command-line client and the daemon.

Every message travels as a JSON object whose ``type`` field names the
message kind; the remaining fields carry its payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Mapping

_MAX_PORT = 0xFFFF
_MAX_PID = 0xFFFFFFFF


class ProtocolError(ValueError):
    """Raised when a message cannot be decoded."""


class StatusKind(Enum):
    """The states a managed service can be in."""

    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    UNHEALTHY = "Unhealthy"
    FAILED = "Failed"


@dataclass(frozen=True)
class ServiceStatus:
    """A service state; a failed state carries a message."""

    kind: StatusKind
    message: str | None = None

    def __post_init__(self) -> None:
        if self.kind is StatusKind.FAILED:
            if not isinstance(self.message, str):
                raise ValueError("a failed status needs a message")
        elif self.message is not None:
            raise ValueError(f"status {self.kind.value} takes no message")

    def to_json(self) -> Any:
        """Return the JSON value for this status."""
        if self.kind is StatusKind.FAILED:
            return {"Failed": self.message}
        return self.kind.value

    @classmethod
    def from_json(cls, data: Any) -> "ServiceStatus":
        """Build a status from its JSON value."""
        if isinstance(data, str):
            try:
                kind = StatusKind(data)
            except ValueError:
                raise ProtocolError(f"unknown service status {data!r}") from None
            if kind is StatusKind.FAILED:
                raise ProtocolError("a failed status needs a message")
            return cls(kind)
        if isinstance(data, Mapping) and set(data) == {"Failed"}:
            message = data["Failed"]
            if not isinstance(message, str):
                raise ProtocolError("failed status message must be a string")
            return cls(StatusKind.FAILED, message)
        raise ProtocolError(f"invalid service status: {data!r}")


@dataclass(frozen=True)
class ServiceNetworkInfo:
    """Where a running service can be reached."""

    ip: str
    port: int | None
    hostname: str
    ports: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class DetailedServiceInfo:
    """Everything the daemon knows about one service."""

    name: str
    status: ServiceStatus
    network_info: ServiceNetworkInfo | None = None
    endpoints: dict[str, str] = field(default_factory=dict)
    pid: int | None = None
    container_id: str | None = None
    start_time: str | None = None
    dependencies: list[str] = field(default_factory=list)


# Requests


@dataclass(frozen=True)
class StartService:
    name: str
    config: dict[str, Any]


@dataclass(frozen=True)
class StopService:
    name: str


@dataclass(frozen=True)
class GetServiceStatus:
    name: str


@dataclass(frozen=True)
class ListServices:
    pass


@dataclass(frozen=True)
class ListServicesDetailed:
    pass


@dataclass(frozen=True)
class RunHealthChecks:
    pass


@dataclass(frozen=True)
class Shutdown:
    pass


@dataclass(frozen=True)
class SetEnvironmentVariables:
    variables: dict[str, str]


@dataclass(frozen=True)
class GetEnvironmentVariables:
    """Ask for the named variables; an empty list asks for all of them."""

    names: list[str] = field(default_factory=list)


# Responses


@dataclass(frozen=True)
class Success:
    pass


@dataclass(frozen=True)
class Error:
    message: str


@dataclass(frozen=True)
class ServiceStarted:
    name: str
    network_info: ServiceNetworkInfo


@dataclass(frozen=True)
class StatusReply:
    status: ServiceStatus


@dataclass(frozen=True)
class ServiceList:
    services: dict[str, ServiceStatus]


@dataclass(frozen=True)
class ServiceListDetailed:
    services: list[DetailedServiceInfo]


@dataclass(frozen=True)
class HealthCheckResults:
    results: dict[str, str]


@dataclass(frozen=True)
class EnvironmentVariables:
    variables: dict[str, str]


_REQUEST_TAGS: dict[type, str] = {
    StartService: "StartService",
    StopService: "StopService",
    GetServiceStatus: "GetServiceStatus",
    ListServices: "ListServices",
    ListServicesDetailed: "ListServicesDetailed",
    RunHealthChecks: "RunHealthChecks",
    Shutdown: "Shutdown",
    SetEnvironmentVariables: "SetEnvironmentVariables",
    GetEnvironmentVariables: "GetEnvironmentVariables",
}

_RESPONSE_TAGS: dict[type, str] = {
    Success: "Success",
    Error: "Error",
    ServiceStarted: "ServiceStarted",
    StatusReply: "ServiceStatus",
    ServiceList: "ServiceList",
    ServiceListDetailed: "ServiceListDetailed",
    HealthCheckResults: "HealthCheckResults",
    EnvironmentVariables: "EnvironmentVariables",
}


def _to_plain(value: Any) -> Any:
    if isinstance(value, ServiceStatus):
        return value.to_json()
    if isinstance(value, (ServiceNetworkInfo, DetailedServiceInfo)):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(key): _to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(item) for item in value]
    return value


def _encode(message: Any, tags: Mapping[type, str], kind: str) -> str:
    tag = tags.get(type(message))
    if tag is None:
        raise TypeError(f"not a {kind}: {message!r}")
    payload: dict[str, Any] = {"type": tag}
    payload.update({f.name: _to_plain(getattr(message, f.name)) for f in fields(message)})
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _get(payload: Mapping[str, Any], key: str) -> Any:
    try:
        return payload[key]
    except KeyError:
        raise ProtocolError(f"missing field `{key}`") from None


def _as_str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"field `{key}` must be a string")
    return value


def _as_uint(value: Any, key: str, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
        raise ProtocolError(f"field `{key}` must be an integer between 0 and {maximum}")
    return value


def _as_port(value: Any, key: str) -> int:
    return _as_uint(value, key, _MAX_PORT)


def _as_pid(value: Any, key: str) -> int:
    return _as_uint(value, key, _MAX_PID)


def _as_object(value: Any, key: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ProtocolError(f"field `{key}` must be an object")
    return value


def _as_list(value: Any, key: str) -> list[Any]:
    if not isinstance(value, list):
        raise ProtocolError(f"field `{key}` must be an array")
    return value


def _as_str_map(value: Any, key: str) -> dict[str, str]:
    return {name: _as_str(item, key) for name, item in _as_object(value, key).items()}


def _as_str_list(value: Any, key: str) -> list[str]:
    return [_as_str(item, key) for item in _as_list(value, key)]


def _as_status(value: Any, key: str) -> ServiceStatus:
    return ServiceStatus.from_json(value)


def _optional(payload: Mapping[str, Any], key: str, convert: Callable[[Any, str], Any]) -> Any:
    value = payload.get(key)
    return None if value is None else convert(value, key)


def _as_network_info(value: Any, key: str) -> ServiceNetworkInfo:
    obj = _as_object(value, key)
    return ServiceNetworkInfo(
        ip=_as_str(_get(obj, "ip"), "ip"),
        port=_optional(obj, "port", _as_port),
        hostname=_as_str(_get(obj, "hostname"), "hostname"),
        ports=[_as_port(item, "ports") for item in _as_list(_get(obj, "ports"), "ports")],
    )


def _as_detailed(value: Any, key: str) -> DetailedServiceInfo:
    obj = _as_object(value, key)
    return DetailedServiceInfo(
        name=_as_str(_get(obj, "name"), "name"),
        status=_as_status(_get(obj, "status"), "status"),
        network_info=_optional(obj, "network_info", _as_network_info),
        endpoints=_as_str_map(_get(obj, "endpoints"), "endpoints"),
        pid=_optional(obj, "pid", _as_pid),
        container_id=_optional(obj, "container_id", _as_str),
        start_time=_optional(obj, "start_time", _as_str),
        dependencies=_as_str_list(_get(obj, "dependencies"), "dependencies"),
    )


_Decoder = Callable[[Mapping[str, Any]], Any]

_REQUEST_DECODERS: dict[str, _Decoder] = {
    "StartService": lambda p: StartService(
        _as_str(_get(p, "name"), "name"), _as_object(_get(p, "config"), "config")
    ),
    "StopService": lambda p: StopService(_as_str(_get(p, "name"), "name")),
    "GetServiceStatus": lambda p: GetServiceStatus(_as_str(_get(p, "name"), "name")),
    "ListServices": lambda p: ListServices(),
    "ListServicesDetailed": lambda p: ListServicesDetailed(),
    "RunHealthChecks": lambda p: RunHealthChecks(),
    "Shutdown": lambda p: Shutdown(),
    "SetEnvironmentVariables": lambda p: SetEnvironmentVariables(
        _as_str_map(_get(p, "variables"), "variables")
    ),
    "GetEnvironmentVariables": lambda p: GetEnvironmentVariables(
        _as_str_list(_get(p, "names"), "names")
    ),
}

_RESPONSE_DECODERS: dict[str, _Decoder] = {
    "Success": lambda p: Success(),
    "Error": lambda p: Error(_as_str(_get(p, "message"), "message")),
    "ServiceStarted": lambda p: ServiceStarted(
        _as_str(_get(p, "name"), "name"),
        _as_network_info(_get(p, "network_info"), "network_info"),
    ),
    "ServiceStatus": lambda p: StatusReply(_as_status(_get(p, "status"), "status")),
    "ServiceList": lambda p: ServiceList(
        {
            name: _as_status(status, "services")
            for name, status in _as_object(_get(p, "services"), "services").items()
        }
    ),
    "ServiceListDetailed": lambda p: ServiceListDetailed(
        [_as_detailed(item, "services") for item in _as_list(_get(p, "services"), "services")]
    ),
    "HealthCheckResults": lambda p: HealthCheckResults(
        _as_str_map(_get(p, "results"), "results")
    ),
    "EnvironmentVariables": lambda p: EnvironmentVariables(
        _as_str_map(_get(p, "variables"), "variables")
    ),
}


def _decode(text: str | bytes, decoders: Mapping[str, _Decoder]) -> Any:
    try:
        payload = json.loads(text)
    except (ValueError, TypeError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("message must be a JSON object")
    tag = _as_str(_get(payload, "type"), "type")
    decoder = decoders.get(tag)
    if decoder is None:
        raise ProtocolError(f"unknown variant `{tag}`")
    return decoder(payload)


def encode_request(request: Any) -> str:
    """Serialize a request to its JSON text."""
    return _encode(request, _REQUEST_TAGS, "request")


def decode_request(text: str | bytes) -> Any:
    """Parse JSON text into a request object."""
    return _decode(text, _REQUEST_DECODERS)


def encode_response(response: Any) -> str:
    """Serialize a response to its JSON text."""
    return _encode(response, _RESPONSE_TAGS, "response")


def decode_response(text: str | bytes) -> Any:
    """Parse JSON text into a response object."""
    return _decode(text, _RESPONSE_DECODERS)