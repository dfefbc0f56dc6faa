import asyncio
import contextlib

import pytest

from svcharness import certificates
from svcharness.certificates import ensure_valid_certificates
from svcharness.client import DEFAULT_DAEMON_PORT, DaemonConnectionError
from svcharness.daemon_status import daemon_status
from svcharness.handlers import DaemonState
from svcharness.server import start_server


@pytest.mark.asyncio
async def test_unreachable_daemon_raises_and_explains(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(certificates, "user_data_dir", lambda *a, **k: str(tmp_path))
    with pytest.raises(DaemonConnectionError):
        await daemon_status()
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Checking daemon status..."
    assert lines[1] == "✗ Daemon is not reachable"
    assert "  harness-executor-daemon" in lines


@pytest.mark.asyncio
async def test_running_daemon_is_reported(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(certificates, "user_data_dir", lambda *a, **k: str(tmp_path))
    ensure_valid_certificates(tmp_path, False)
    state = DaemonState(service_manager=None, environ={})
    task = asyncio.create_task(start_server(tmp_path, DEFAULT_DAEMON_PORT, state))
    try:
        for _ in range(100):
            if task.done():
                task.result()
            try:
                _, writer = await asyncio.open_connection("127.0.0.1", DEFAULT_DAEMON_PORT)
            except OSError:
                await asyncio.sleep(0.05)
                continue
            writer.close()
            break
        await daemon_status()
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    out = capsys.readouterr().out
    assert f"✓ Daemon is running on port {DEFAULT_DAEMON_PORT}" in out
    assert "  Status: Connected" in out