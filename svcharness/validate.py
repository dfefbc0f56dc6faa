"""Checking a configuration file for mistakes before anything is started."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

from .config import (
    CommandCheck,
    Config,
    ConfigError,
    DockerService,
    HttpCheck,
    Service,
    TcpCheck,
    host_port,
    load_config,
)
from .dependencies import DependencyError, topological_sort

_REFERENCE = re.compile(r"\$\{([^}]+)\}")


@dataclass
class ValidationReport:
    """What validating a configuration found."""

    start_order: list[str] | None = None
    port_count: int = 0
    port_conflicts: int = 0
    health_check_count: int = 0
    service_reference_count: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when no errors were found."""
        return not self.errors


def _service_strings(service: Service) -> Iterator[str]:
    kind = service.kind
    if isinstance(kind, DockerService):
        yield kind.image
        yield from kind.volumes
        yield from kind.command or ()
        yield from kind.entrypoint or ()
    else:
        yield kind.binary
        yield from kind.args
        if kind.working_dir is not None:
            yield kind.working_dir
    yield from service.env.values()
    if service.health_check is not None:
        check = service.health_check.check
        if isinstance(check, HttpCheck):
            yield check.url
        elif isinstance(check, CommandCheck):
            yield check.command
            yield from check.args
        elif check.host is not None:
            yield check.host


def _find_references(config: Config) -> tuple[list[str], list[str]]:
    env_vars: dict[str, None] = {}
    service_refs: dict[str, None] = {}
    for service in config.services.values():
        for text in _service_strings(service):
            for match in _REFERENCE.finditer(text):
                name = match.group(1).strip()
                if "." in name:
                    service_refs[name] = None
                else:
                    env_vars[name] = None
    return list(env_vars), list(service_refs)


def _check_dependencies(config: Config, report: ValidationReport) -> None:
    try:
        report.start_order = topological_sort(config, [])
    except DependencyError as exc:
        report.errors.append(f"Circular dependency detected: {exc}")


def _check_ports(config: Config, report: ValidationReport) -> None:
    usage: dict[int, list[str]] = {}
    for name, service in config.services.items():
        if not isinstance(service.kind, DockerService):
            continue
        for mapping in service.kind.ports:
            port = host_port(mapping)
            if port:
                usage.setdefault(port, []).append(name)
    for port, users in usage.items():
        if len(users) > 1:
            report.port_conflicts += 1
            report.errors.append(
                f"Port {port} is used by multiple services: {', '.join(users)}"
            )
    report.port_count = len(usage)


def _check_health(config: Config, report: ValidationReport) -> None:
    for name, service in config.services.items():
        health = service.health_check
        if health is None:
            continue
        report.health_check_count += 1
        check = health.check
        if isinstance(check, HttpCheck):
            if not check.url.startswith(("http://", "https://")):
                report.warnings.append(
                    f"Service '{name}' health check URL should start with http:// or https://"
                )
        elif isinstance(check, TcpCheck):
            if check.port == 0:
                report.errors.append(
                    f"Service '{name}' has invalid TCP health check port: 0"
                )
        elif not check.command:
            report.errors.append(f"Service '{name}' has empty health check command")

        if health.interval == 0:
            report.warnings.append(f"Service '{name}' has health check interval of 0")
        if health.timeout >= health.interval:
            report.warnings.append(
                f"Service '{name}' health check timeout ({health.timeout}) "
                f"should be less than interval ({health.interval})"
            )


def _check_references(
    config: Config, report: ValidationReport, strict: bool, environ: Mapping[str, str]
) -> None:
    env_vars, service_refs = _find_references(config)

    invalid: list[str] = []
    for ref in service_refs:
        service_name, _, ref_type = ref.partition(".")
        service = config.services.get(service_name)
        if service is None:
            invalid.append(ref)
        elif ref_type == "port":
            if isinstance(service.kind, DockerService):
                if not service.kind.ports:
                    report.warnings.append(
                        f"Reference '{ref}' used but service has no ports configured"
                    )
            else:
                report.warnings.append(
                    f"Reference '{ref}' used but service type doesn't expose ports"
                )
    if invalid:
        report.errors.append(f"Invalid service references: {', '.join(invalid)}")

    missing = [var for var in env_vars if var not in environ]
    if missing:
        if strict:
            report.errors.append(f"Missing environment variables: {', '.join(missing)}")
        else:
            report.warnings.append(
                f"Environment variables not currently set: {', '.join(missing)}"
            )
    report.service_reference_count = len(service_refs)


def _check_networks(config: Config, report: ValidationReport) -> None:
    per_network: dict[str, list[str]] = {}
    for name, service in config.services.items():
        per_network.setdefault(service.network, []).append(name)
    for network, members in per_network.items():
        if len(members) == 1 and len(config.networks) > 1:
            report.warnings.append(
                f"Network '{network}' has only one service ({members[0]}), "
                "consider consolidating networks"
            )
    for network in config.networks:
        if network not in per_network:
            report.warnings.append(
                f"Network '{network}' is defined but not used by any service"
            )


def validate_config(
    config: Config, strict: bool = False, environ: Mapping[str, str] | None = None
) -> ValidationReport:
    """Run every check on a parsed configuration and collect the findings.

    Environment variable references are looked up in ``environ``, the
    process environment unless another mapping is given; with ``strict``
    a missing variable is an error rather than a warning.
    """
    if environ is None:
        environ = os.environ
    report = ValidationReport()
    _check_dependencies(config, report)
    _check_ports(config, report)
    _check_health(config, report)
    _check_references(config, report, strict, environ)
    _check_networks(config, report)
    return report


def run(config_path: str | Path, strict: bool = False) -> ValidationReport:
    """Validate a configuration file, printing a report.

    Raises ConfigError if the file cannot be parsed or has errors.
    """
    print(f"Validating {config_path}...")
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        raise ConfigError(f"Failed to parse configuration: {exc}") from exc

    print("✓ Configuration syntax valid")
    print(f"  Version: {config.version}")
    if config.name is not None:
        print(f"  Name: {config.name}")
    print(f"  Networks: {len(config.networks)}")
    print(f"  Services: {len(config.services)}")

    report = validate_config(config, strict)

    print("\n🔍 Checking service dependencies...")
    if report.start_order is not None:
        print("  ✓ No circular dependencies found")
        print(f"  ✓ Service start order: {' → '.join(report.start_order)}")

    print("\n🔍 Checking for port conflicts...")
    if report.port_count == 0:
        print("  ✓ No port mappings found")
    elif report.port_conflicts == 0:
        print("  ✓ No port conflicts detected")

    print("\n🔍 Validating health checks...")
    if report.health_check_count == 0:
        print("  ⚠ No health checks configured")
    else:
        print(f"  ✓ {report.health_check_count} health checks configured")

    print("\n🔍 Checking variable references...")
    print(f"  ✓ {report.service_reference_count} service references found")

    print("\n🔍 Checking network configuration...")
    print("  ✓ Network configuration validated")

    print("\n📊 Validation Summary:")
    if not report.errors and not report.warnings:
        print("  ✅ All validation checks passed!")
        return report
    if report.errors:
        print(f"\n❌ Errors ({len(report.errors)}):")
        for error in report.errors:
            print(f"  - {error}")
    if report.warnings:
        print(f"\n⚠️  Warnings ({len(report.warnings)}):")
        for warning in report.warnings:
            print(f"  - {warning}")
    if report.errors:
        raise ConfigError(
            f"Configuration validation failed with {len(report.errors)} errors"
        )
    return report