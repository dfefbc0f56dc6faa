"""Reporting whether the daemon can be reached."""

from __future__ import annotations

from .client import DEFAULT_DAEMON_PORT, connect_to_daemon


async def daemon_status() -> None:
    """Print whether the daemon is reachable; raise if it is not."""
    print("Checking daemon status...")
    try:
        client = await connect_to_daemon()
    except Exception as exc:
        print("✗ Daemon is not reachable")
        print(f"  Error: {exc}")
        print()
        print("To start the daemon:")
        print("  harness-executor-daemon")
        raise

    print(f"✓ Daemon is running on port {DEFAULT_DAEMON_PORT}")
    print("  Status: Connected")
    await client.close()