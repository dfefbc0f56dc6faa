"""Setting and reading environment variables inside the daemon."""

from __future__ import annotations

from typing import Iterable

from .client import connect_to_daemon
from .protocol import (
    EnvironmentVariables,
    Error,
    GetEnvironmentVariables,
    SetEnvironmentVariables,
    Success,
)


def parse_assignments(variables: Iterable[str]) -> dict[str, str]:
    """Parse KEY=VALUE strings; the value may itself contain '='."""
    parsed: dict[str, str] = {}
    for item in variables:
        key, sep, value = item.partition("=")
        if not sep:
            raise ValueError(
                f"Invalid environment variable format: '{item}'. Expected KEY=VALUE"
            )
        parsed[key] = value
    return parsed


async def set_variables(variables: Iterable[str]) -> dict[str, str]:
    """Set KEY=VALUE variables in the daemon and return what was set."""
    env_vars = parse_assignments(variables)
    async with await connect_to_daemon() as daemon:
        response = await daemon.send_request(SetEnvironmentVariables(dict(env_vars)))

    if isinstance(response, Success):
        print(f"✓ Set {len(env_vars)} environment variables in daemon")
        for key in env_vars:
            print(f"  - {key}")
        return env_vars
    if isinstance(response, Error):
        raise RuntimeError(f"Failed to set environment variables: {response.message}")
    raise RuntimeError("Unexpected response from daemon")


async def get_variables(names: Iterable[str]) -> dict[str, str]:
    """Print and return the named daemon variables, or all of them if none are named."""
    requested = list(names)
    async with await connect_to_daemon() as daemon:
        response = await daemon.send_request(GetEnvironmentVariables(requested))

    if isinstance(response, EnvironmentVariables):
        variables = response.variables
        if not variables:
            if requested:
                print("None of the requested variables are set in daemon")
            else:
                print("No environment variables set in daemon")
        for key, value in sorted(variables.items()):
            print(f"{key}={value}")
        return dict(variables)
    if isinstance(response, Error):
        raise RuntimeError(f"Failed to get environment variables: {response.message}")
    raise RuntimeError("Unexpected response from daemon")