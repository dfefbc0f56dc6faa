"""The daemon's WebSocket server."""

from __future__ import annotations

import asyncio
import logging
import ssl
from pathlib import Path
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosedError

from .certificates import CertificateError, ensure_valid_certificates
from .handlers import DaemonState, handle_request
from .protocol import Error, ProtocolError, decode_request, encode_response

logger = logging.getLogger(__name__)

_LISTEN_HOST = "127.0.0.1"
_CERT_MARKER = "-----BEGIN CERTIFICATE-----"
_KEY_MARKER = "PRIVATE KEY-----"


def load_tls_context(data_dir: str | Path) -> ssl.SSLContext:
    """Build the server TLS context from the certificate and key in data_dir."""
    cert_dir = Path(data_dir) / "certs"
    cert_path = cert_dir / "server.crt"
    key_path = cert_dir / "server.key"

    try:
        cert_pem = cert_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CertificateError(f"Failed to read certificate: {exc}") from exc
    try:
        key_pem = key_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CertificateError(f"Failed to read private key: {exc}") from exc

    if _CERT_MARKER not in cert_pem:
        raise CertificateError("Failed to parse certificate: no certificate found")
    if _KEY_MARKER not in key_pem:
        raise CertificateError("No private keys found in key file")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(cert_path, key_path)
    except (ssl.SSLError, OSError) as exc:
        raise CertificateError(f"Failed to create TLS config: {exc}") from exc
    return context


async def handle_connection(websocket: Any, state: DaemonState) -> None:
    """Answer every text message on one connection until it closes."""
    try:
        async for message in websocket:
            if not isinstance(message, str):
                continue
            try:
                request = decode_request(message)
            except ProtocolError as exc:
                logger.error("Failed to parse request: %s", exc)
                reply = Error(f"Invalid request format: {exc}")
                await websocket.send(encode_response(reply))
                continue
            response = await handle_request(request, state)
            await websocket.send(encode_response(response))
    except ConnectionClosedError as exc:
        logger.error("WebSocket error: %s", exc)
    logger.debug("Connection closed")


async def start_server(data_dir: str | Path, port: int, state: DaemonState) -> None:
    """Serve requests over TLS on the loopback interface until cancelled."""
    tls_context = load_tls_context(data_dir)

    async def _handler(websocket: Any) -> None:
        await handle_connection(websocket, state)

    async with websockets.serve(_handler, _LISTEN_HOST, port, ssl=tls_context):
        logger.info("Executor daemon listening on wss://%s:%d", _LISTEN_HOST, port)
        await asyncio.Future()


async def run_daemon(data_dir: str | Path, port: int, state: DaemonState) -> None:
    """Make sure certificates are usable, then run the server."""
    ensure_valid_certificates(data_dir, False)
    await start_server(data_dir, port, state)