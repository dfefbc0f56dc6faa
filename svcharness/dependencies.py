"""Ordering services by their dependencies."""

from __future__ import annotations

from typing import Callable, Iterable

from .config import Config


class DependencyError(ValueError):
    """Raised on unknown dependencies or dependency cycles."""


def build_dependency_graph(config: Config) -> dict[str, list[str]]:
    """Map every service to the services that depend on it."""
    graph: dict[str, list[str]] = {name: [] for name in config.services}
    for name, service in config.services.items():
        for dep in service.dependencies:
            dependents = graph.get(dep)
            if dependents is not None and name not in dependents:
                dependents.append(name)
    return graph


def _collect_dependents(graph: dict[str, list[str]], service: str, collected: dict[str, None]) -> None:
    for dependent in graph.get(service, ()):
        if dependent not in collected:
            collected[dependent] = None
            _collect_dependents(graph, dependent, collected)


def _collect_dependencies(config: Config, service: str, collected: dict[str, None]) -> None:
    definition = config.services.get(service)
    if definition is None:
        return
    for dep in definition.dependencies:
        if dep in collected:
            continue
        if dep not in config.services:
            raise DependencyError(f"Service '{service}' depends on unknown service '{dep}'")
        collected[dep] = None
        _collect_dependencies(config, dep, collected)


def _order(roots: Iterable[str], neighbours: Callable[[str], Iterable[str]]) -> list[str]:
    result: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(service: str) -> None:
        if service in visiting:
            raise DependencyError(
                f"Circular dependency detected involving service '{service}'"
            )
        visiting.add(service)
        for other in neighbours(service):
            if other not in visited:
                visit(other)
        visiting.discard(service)
        visited.add(service)
        result.append(service)

    for root in roots:
        if root not in visited:
            visit(root)
    return result


def topological_sort(config: Config, services: Iterable[str]) -> list[str]:
    """Order services so dependencies come first.

    With no services named, all services are ordered; otherwise the named
    services and everything they depend on.
    """
    requested = list(services)
    if requested:
        roots: dict[str, None] = {}
        for service in requested:
            roots[service] = None
            _collect_dependencies(config, service, roots)
    else:
        roots = dict.fromkeys(config.services)

    def dependencies_of(name: str) -> Iterable[str]:
        definition = config.services.get(name)
        return definition.dependencies if definition is not None else ()

    return _order(roots, dependencies_of)


def reverse_topological_sort(config: Config, services: Iterable[str]) -> list[str]:
    """Order services so dependents come first, for stopping safely.

    With no services named, all services are ordered; otherwise the named
    services and everything that depends on them.
    """
    graph = build_dependency_graph(config)
    requested = list(services)
    if requested:
        roots: dict[str, None] = {}
        for service in requested:
            roots[service] = None
            _collect_dependents(graph, service, roots)
    else:
        roots = dict.fromkeys(config.services)
    return _order(roots, lambda name: graph.get(name, ()))


def get_affected_services(config: Config, services: Iterable[str]) -> list[str]:
    """Return, sorted, the other services that depend on the given ones."""
    graph = build_dependency_graph(config)
    requested = list(services)
    affected: dict[str, None] = {}
    for service in requested:
        _collect_dependents(graph, service, affected)
    for service in requested:
        affected.pop(service, None)
    return sorted(affected)