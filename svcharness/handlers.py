"""Turning daemon requests into responses."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping

from .protocol import (
    DetailedServiceInfo,
    EnvironmentVariables,
    Error,
    GetEnvironmentVariables,
    GetServiceStatus,
    HealthCheckResults,
    ListServices,
    ListServicesDetailed,
    RunHealthChecks,
    ServiceList,
    ServiceListDetailed,
    ServiceNetworkInfo,
    ServiceStarted,
    SetEnvironmentVariables,
    Shutdown,
    StartService,
    StatusReply,
    StopService,
    Success,
)

logger = logging.getLogger(__name__)


@dataclass
class DaemonState:
    """State shared by every connection of the daemon.

    The service manager is expected to provide the coroutines
    ``start_service``, ``stop_service``, ``get_service_status``,
    ``list_services``, ``get_service_info`` and ``run_health_checks``.
    Environment requests act on ``environ``, the process environment
    unless another mapping is given.
    """

    service_manager: Any
    registry: Any = None
    environ: MutableMapping[str, str] = field(default_factory=lambda: os.environ)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _network_info(net: Any) -> ServiceNetworkInfo:
    return ServiceNetworkInfo(
        ip=_field(net, "ip"),
        port=_field(net, "port"),
        hostname=_field(net, "hostname"),
        ports=list(_field(net, "ports", None) or []),
    )


def _fallback_network_info(name: str) -> ServiceNetworkInfo:
    return ServiceNetworkInfo(ip="127.0.0.1", port=None, hostname=f"{name}.local", ports=[])


async def _start(request: StartService, state: DaemonState) -> Any:
    logger.info("Starting service: %s", request.name)
    try:
        running = await state.service_manager.start_service(request.name, request.config)
    except Exception as exc:
        return Error(f"Failed to start service: {exc}")
    net = _field(running, "network_info")
    info = _network_info(net) if net is not None else _fallback_network_info(request.name)
    return ServiceStarted(name=request.name, network_info=info)


async def _stop(request: StopService, state: DaemonState) -> Any:
    logger.info("Stopping service: %s", request.name)
    try:
        await state.service_manager.stop_service(request.name)
    except Exception as exc:
        return Error(f"Failed to stop service: {exc}")
    return Success()


async def _status(request: GetServiceStatus, state: DaemonState) -> Any:
    try:
        status = await state.service_manager.get_service_status(request.name)
    except Exception as exc:
        return Error(f"Failed to get service status: {exc}")
    return StatusReply(status)


async def _list(state: DaemonState) -> Any:
    try:
        names = await state.service_manager.list_services()
    except Exception as exc:
        return Error(f"Failed to list services: {exc}")
    statuses = {}
    for name in names:
        try:
            statuses[name] = await state.service_manager.get_service_status(name)
        except Exception as exc:
            logger.error("Failed to get status for service %s: %s", name, exc)
    return ServiceList(statuses)


async def _describe(name: str, state: DaemonState) -> DetailedServiceInfo | None:
    manager = state.service_manager
    try:
        status = await manager.get_service_status(name)
    except Exception as exc:
        logger.error("Failed to get status for service %s: %s", name, exc)
        return None
    try:
        running = await manager.get_service_info(name)
    except Exception as exc:
        logger.error("Failed to get detailed info for service %s: %s", name, exc)
        running = None

    if running is None:
        return DetailedServiceInfo(name=name, status=status)

    net = _field(running, "network_info")
    metadata = _field(running, "metadata", None) or {}
    config = _field(running, "config")
    return DetailedServiceInfo(
        name=name,
        status=status,
        network_info=_network_info(net) if net is not None else None,
        endpoints=dict(_field(running, "endpoints", None) or {}),
        pid=_field(running, "pid"),
        container_id=_field(running, "container_id"),
        start_time=metadata.get("start_time"),
        dependencies=list(_field(config, "dependencies", None) or []),
    )


async def _list_detailed(state: DaemonState) -> Any:
    try:
        names = await state.service_manager.list_services()
    except Exception as exc:
        return Error(f"Failed to list services: {exc}")
    services = []
    for name in names:
        info = await _describe(name, state)
        if info is not None:
            services.append(info)
    return ServiceListDetailed(services)


async def _health_checks(state: DaemonState) -> Any:
    try:
        results = await state.service_manager.run_health_checks()
    except Exception as exc:
        return Error(f"Failed to run health checks: {exc}")
    return HealthCheckResults({name: str(value) for name, value in results.items()})


def _get_env(request: GetEnvironmentVariables, state: DaemonState) -> Any:
    if not request.names:
        return EnvironmentVariables(dict(state.environ))
    return EnvironmentVariables(
        {name: state.environ[name] for name in request.names if name in state.environ}
    )


async def handle_request(request: Any, state: DaemonState) -> Any:
    """Carry out one request and return the response to send back."""
    logger.debug("Handling request: %r", request)

    if isinstance(request, StartService):
        return await _start(request, state)
    if isinstance(request, StopService):
        return await _stop(request, state)
    if isinstance(request, GetServiceStatus):
        return await _status(request, state)
    if isinstance(request, ListServices):
        return await _list(state)
    if isinstance(request, ListServicesDetailed):
        return await _list_detailed(state)
    if isinstance(request, RunHealthChecks):
        return await _health_checks(state)
    if isinstance(request, Shutdown):
        logger.info("Shutdown requested")
        return Success()
    if isinstance(request, SetEnvironmentVariables):
        state.environ.update(request.variables)
        return Success()
    if isinstance(request, GetEnvironmentVariables):
        return _get_env(request, state)
    raise TypeError(f"unsupported request: {request!r}")