import contextlib
import socket

import pytest
import websockets

from svcharness.certificates import generate_certificates
from svcharness.client import DaemonClient, DaemonConnectionError, connect_to_daemon
from svcharness.handlers import DaemonState
from svcharness.protocol import (
    EnvironmentVariables,
    GetEnvironmentVariables,
    ListServices,
    ServiceList,
    ServiceStatus,
    SetEnvironmentVariables,
    StatusKind,
    Success,
)
from svcharness.server import handle_connection, load_tls_context


class FakeManager:
    def __init__(self):
        self.statuses = {"db": ServiceStatus(StatusKind.RUNNING)}

    async def list_services(self):
        return list(self.statuses)

    async def get_service_status(self, name):
        return self.statuses[name]


def _state():
    return DaemonState(service_manager=FakeManager(), environ={})


@contextlib.asynccontextmanager
async def _serve(handler, **kwargs):
    async with websockets.serve(handler, "127.0.0.1", 0, **kwargs) as server:
        yield list(server.sockets)[0].getsockname()[1]


def _daemon_handler(state):
    async def handler(websocket):
        await handle_connection(websocket, state)

    return handler


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_plain_round_trip():
    state = _state()
    async with _serve(_daemon_handler(state)) as port:
        client = await DaemonClient.connect(port)
        reply = await client.send_request(ListServices())
        await client.close()
    assert reply == ServiceList(state.service_manager.statuses)


@pytest.mark.asyncio
async def test_environment_round_trip():
    state = _state()
    async with _serve(_daemon_handler(state)) as port:
        async with await DaemonClient.connect(port) as client:
            set_reply = await client.send_request(SetEnvironmentVariables({"GREETING": "hello"}))
            get_reply = await client.send_request(
                GetEnvironmentVariables(["GREETING", "MISSING"])
            )
    assert set_reply == Success()
    assert get_reply == EnvironmentVariables({"GREETING": "hello"})
    assert state.environ == {"GREETING": "hello"}


@pytest.mark.asyncio
async def test_connect_refused():
    port = _free_port()
    with pytest.raises(DaemonConnectionError, match="Failed to connect to daemon") as info:
        await DaemonClient.connect(port)
    assert isinstance(info.value.__cause__, ConnectionRefusedError)


@pytest.mark.asyncio
async def test_binary_reply_is_rejected():
    async def handler(websocket):
        async for _ in websocket:
            await websocket.send(b"\x00")

    async with _serve(handler) as port:
        client = await DaemonClient.connect(port)
        with pytest.raises(DaemonConnectionError, match="Unexpected message type"):
            await client.send_request(ListServices())
        await client.close()


@pytest.mark.asyncio
async def test_garbage_reply_is_rejected():
    async def handler(websocket):
        async for _ in websocket:
            await websocket.send("not json")

    async with _serve(handler) as port:
        client = await DaemonClient.connect(port)
        with pytest.raises(DaemonConnectionError, match="Failed to parse daemon response"):
            await client.send_request(ListServices())
        await client.close()


@pytest.mark.asyncio
async def test_daemon_closing_connection():
    async def handler(websocket):
        await websocket.close()

    async with _serve(handler) as port:
        client = await DaemonClient.connect(port)
        with pytest.raises(DaemonConnectionError, match="Connection closed"):
            await client.send_request(ListServices())


@pytest.mark.asyncio
async def test_request_after_close_fails():
    async with _serve(_daemon_handler(_state())) as port:
        client = await DaemonClient.connect(port)
        await client.close()
        with pytest.raises(DaemonConnectionError, match="Connection closed"):
            await client.send_request(ListServices())


@pytest.mark.asyncio
async def test_connect_tls_without_certificate(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    with pytest.raises(DaemonConnectionError, match="Daemon certificate not found"):
        await DaemonClient.connect_tls(_free_port(), True)


@pytest.mark.asyncio
async def test_connect_to_daemon_passes_certificate_error_through(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    with pytest.raises(DaemonConnectionError, match="Has the daemon been started"):
        await connect_to_daemon()


@pytest.mark.asyncio
async def test_tls_round_trip(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    data_dir = tmp_path / "harness"
    generate_certificates(data_dir / "certs")
    state = _state()
    async with _serve(_daemon_handler(state), ssl=load_tls_context(data_dir)) as port:
        client = await DaemonClient.connect_tls(port, True)
        reply = await client.send_request(ListServices())
        await client.close()
    assert client.secure is True
    assert reply == ServiceList(state.service_manager.statuses)


@pytest.mark.asyncio
async def test_tls_rejects_unknown_certificate(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    generate_certificates(tmp_path / "harness" / "certs")
    other = tmp_path / "other"
    generate_certificates(other / "certs")
    async with _serve(_daemon_handler(_state()), ssl=load_tls_context(other)) as port:
        with pytest.raises(DaemonConnectionError, match="TLS handshake failed"):
            await DaemonClient.connect_tls(port, True)