"""WebSocket client for talking to the daemon."""

from __future__ import annotations

import asyncio
import logging
import ssl
from pathlib import Path
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .certificates import default_data_dir
from .protocol import ProtocolError, decode_response, encode_request

logger = logging.getLogger(__name__)

DEFAULT_DAEMON_PORT = 9443

_HOST = "127.0.0.1"
_TLS_SERVER_NAME = "localhost"
_CERT_MARKER = "-----BEGIN CERTIFICATE-----"


class DaemonConnectionError(ConnectionError):
    """Raised when the daemon cannot be reached or answers unexpectedly."""


def _daemon_certificate() -> Path:
    return default_data_dir() / "certs" / "server.crt"


def _tls_context(verify_cert: bool) -> ssl.SSLContext:
    cert_path = _daemon_certificate()
    if not cert_path.exists():
        raise DaemonConnectionError(
            f'Daemon certificate not found at "{cert_path}". Has the daemon been started?'
        )
    try:
        cert_pem = cert_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise DaemonConnectionError(f"Failed to read daemon certificate: {exc}") from exc
    if _CERT_MARKER not in cert_pem:
        raise DaemonConnectionError(f'No certificates found in "{cert_path}"')

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        context.load_verify_locations(cadata=cert_pem)
    except (ssl.SSLError, ValueError) as exc:
        raise DaemonConnectionError(f"Failed to parse certificate: {exc}") from exc
    if not verify_cert:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class DaemonClient:
    """An open connection to the daemon."""

    def __init__(self, websocket: Any, secure: bool = False) -> None:
        self._websocket = websocket
        self.secure = secure

    @classmethod
    async def _open(cls, uri: str, secure: bool, **kwargs: Any) -> "DaemonClient":
        try:
            websocket = await websockets.connect(uri, **kwargs)
        except ssl.SSLError as exc:
            raise DaemonConnectionError(f"TLS handshake failed: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise DaemonConnectionError(f"Failed to connect to daemon: {exc}") from exc
        except WebSocketException as exc:
            raise DaemonConnectionError(
                f"Failed to establish WebSocket connection: {exc}"
            ) from exc
        logger.debug("Connected to daemon at %s (%s)", uri, "TLS" if secure else "no TLS")
        return cls(websocket, secure)

    @classmethod
    async def connect(cls, port: int) -> "DaemonClient":
        """Connect to the daemon without TLS."""
        return await cls._open(f"ws://{_HOST}:{port}/", False)

    @classmethod
    async def connect_tls(cls, port: int, verify_cert: bool = True) -> "DaemonClient":
        """Connect over TLS, trusting the daemon's own certificate."""
        context = _tls_context(verify_cert)
        return await cls._open(
            f"wss://{_HOST}:{port}/", True, ssl=context, server_hostname=_TLS_SERVER_NAME
        )

    async def send_request(self, request: Any) -> Any:
        """Send one request and return the daemon's response."""
        try:
            await self._websocket.send(encode_request(request))
            reply = await self._websocket.recv()
        except ConnectionClosed as exc:
            raise DaemonConnectionError("Connection closed by daemon") from exc
        except WebSocketException as exc:
            raise DaemonConnectionError(f"WebSocket error: {exc}") from exc
        if not isinstance(reply, str):
            raise DaemonConnectionError("Unexpected message type from daemon")
        try:
            return decode_response(reply)
        except ProtocolError as exc:
            raise DaemonConnectionError(f"Failed to parse daemon response: {exc}") from exc

    async def close(self) -> None:
        """Close the connection."""
        try:
            await self._websocket.close()
        except WebSocketException as exc:
            raise DaemonConnectionError(f"WebSocket error: {exc}") from exc

    async def __aenter__(self) -> "DaemonClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def connect_to_daemon() -> DaemonClient:
    """Connect to the local daemon over TLS on the default port."""
    port = DEFAULT_DAEMON_PORT
    try:
        return await DaemonClient.connect_tls(port, True)
    except DaemonConnectionError as exc:
        text = str(exc)
        refused = isinstance(exc.__cause__, (ConnectionRefusedError, ConnectionResetError))
        if refused or "Connection refused" in text or "Connection reset" in text:
            raise DaemonConnectionError(
                f"Cannot connect to harness daemon on port {port}.\n\n"
                "Start the daemon with:\n  harness-executor-daemon"
            ) from exc
        raise