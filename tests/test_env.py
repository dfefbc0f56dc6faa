import asyncio
import contextlib

import pytest

from svcharness import certificates
from svcharness.certificates import ensure_valid_certificates
from svcharness.client import DEFAULT_DAEMON_PORT, DaemonConnectionError
from svcharness.env import get_variables, parse_assignments, set_variables
from svcharness.handlers import DaemonState
from svcharness.server import start_server


@contextlib.asynccontextmanager
async def running_daemon(tmp_path, monkeypatch, environ):
    monkeypatch.setattr(certificates, "user_data_dir", lambda *a, **k: str(tmp_path))
    ensure_valid_certificates(tmp_path, False)
    state = DaemonState(service_manager=None, environ=environ)
    task = asyncio.create_task(start_server(tmp_path, DEFAULT_DAEMON_PORT, state))
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
    try:
        yield state
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def test_parse_assignments_splits_on_first_equals():
    assert parse_assignments(["A=1", "B=x=y", "C="]) == {"A": "1", "B": "x=y", "C": ""}


def test_parse_assignments_rejects_missing_equals():
    with pytest.raises(ValueError, match="Expected KEY=VALUE"):
        parse_assignments(["NOVALUE"])


@pytest.mark.asyncio
async def test_set_variables_rejects_bad_format_before_connecting():
    with pytest.raises(ValueError, match="'bad'"):
        await set_variables(["bad"])


@pytest.mark.asyncio
async def test_missing_certificate_is_reported(tmp_path, monkeypatch):
    monkeypatch.setattr(certificates, "user_data_dir", lambda *a, **k: str(tmp_path))
    with pytest.raises(DaemonConnectionError, match="Daemon certificate not found"):
        await get_variables([])


@pytest.mark.asyncio
async def test_set_then_get_variables(tmp_path, monkeypatch, capsys):
    environ = {}
    async with running_daemon(tmp_path, monkeypatch, environ):
        result = await set_variables(["X=1", "Y=a=b"])
        assert result == {"X": "1", "Y": "a=b"}
        assert environ == {"X": "1", "Y": "a=b"}
        out = capsys.readouterr().out
        assert out.splitlines() == [
            "✓ Set 2 environment variables in daemon",
            "  - X",
            "  - Y",
        ]

        got = await get_variables(["Y", "missing"])
        assert got == {"Y": "a=b"}
        assert capsys.readouterr().out == "Y=a=b\n"


@pytest.mark.asyncio
async def test_get_all_variables_sorted(tmp_path, monkeypatch, capsys):
    async with running_daemon(tmp_path, monkeypatch, {"B": "2", "A": "1"}):
        got = await get_variables([])
    assert got == {"A": "1", "B": "2"}
    assert capsys.readouterr().out == "A=1\nB=2\n"


@pytest.mark.asyncio
async def test_get_reports_empty_results(tmp_path, monkeypatch, capsys):
    async with running_daemon(tmp_path, monkeypatch, {}):
        assert await get_variables([]) == {}
        assert capsys.readouterr().out == "No environment variables set in daemon\n"
        assert await get_variables(["NOPE"]) == {}
        assert (
            capsys.readouterr().out
            == "None of the requested variables are set in daemon\n"
        )