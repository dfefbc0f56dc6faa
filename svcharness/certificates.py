"""TLS certificates that secure the client-daemon connection."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
import math
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from platformdirs import user_data_dir

logger = logging.getLogger(__name__)

VALIDITY_DAYS = 365
_EXPIRY_WARNING_DAYS = 30
_EXPIRY_URGENT_DAYS = 7
_BEGIN_MARKER = "-----BEGIN CERTIFICATE-----"
_END_MARKER = "-----END CERTIFICATE-----"
_REGENERATE_HINT = "harness daemon regenerate-certs"

_README_TEMPLATE = """# Harness TLS Certificates

These certificates secure communication between the harness CLI and executor daemon.

## Current Certificate
- Generated: {generated}
- Expires: {expires}
- Valid for: localhost, 127.0.0.1

## Certificate Details
- Algorithm: ECDSA P-256
- Self-signed: Yes
- Purpose: Development/Testing

## To Regenerate
Run: `harness daemon regenerate-certs`

## Using Custom Certificates
Replace server.crt and server.key with your own files.
The daemon will use whatever valid certificates are present.

## Security Note
These are self-signed certificates suitable for local development.
For production use, consider using certificates from a trusted CA.
"""


class CertificateError(RuntimeError):
    """Raised when certificates cannot be read, parsed or written, or have expired."""


def default_data_dir() -> Path:
    """Return the per-user directory where the daemon keeps its data."""
    return Path(user_data_dir("harness", appauthor=False))


def _paths(data_dir: str | Path) -> tuple[Path, Path, Path]:
    cert_dir = Path(data_dir) / "certs"
    return cert_dir, cert_dir / "server.crt", cert_dir / "server.key"


def ensure_valid_certificates(data_dir: str | Path, interactive: bool = False) -> None:
    """Generate certificates if missing; fail if the existing one has expired."""
    cert_dir, cert_path, key_path = _paths(data_dir)

    if not cert_path.exists() or not key_path.exists():
        logger.info("No TLS certificates found, generating new ones...")
        generate_certificates(cert_dir)
        return

    try:
        days = certificate_days_remaining(cert_path)
    except CertificateError as exc:
        logger.error("Failed to check certificate expiry: %s", exc)
        raise

    if days < 0:
        logger.error("Certificate expired %d days ago!", -days)
        raise CertificateError(
            f"Certificate expired. Run '{_REGENERATE_HINT}' to create new certificates"
        )
    if days < _EXPIRY_WARNING_DAYS:
        logger.warning("Certificate expires in %d days", days)
        if days < _EXPIRY_URGENT_DAYS:
            logger.warning("Consider regenerating soon with '%s'", _REGENERATE_HINT)
    else:
        logger.info("Certificate valid for %d more days", days)


def regenerate_certificates(data_dir: str | Path) -> None:
    """Back up any existing certificate and key, then generate new ones."""
    cert_dir, cert_path, key_path = _paths(data_dir)

    if cert_path.exists():
        try:
            cert_path.rename(cert_path.with_name(cert_path.name + ".backup"))
        except OSError as exc:
            raise CertificateError(f"Failed to backup certificate: {exc}") from exc
        logger.info("Backed up existing certificate")

    if key_path.exists():
        try:
            key_path.rename(key_path.with_name(key_path.name + ".backup"))
        except OSError as exc:
            raise CertificateError(f"Failed to backup key: {exc}") from exc
        logger.info("Backed up existing key")

    generate_certificates(cert_dir)


def generate_certificates(cert_dir: str | Path) -> None:
    """Write a new self-signed certificate, its key and a README into cert_dir."""
    cert_dir = Path(cert_dir)
    try:
        cert_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CertificateError(f"Failed to create certificate directory: {exc}") from exc

    now = datetime.now(timezone.utc)
    expires = now + timedelta(days=VALIDITY_DAYS)

    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, "localhost"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Harness Executor Daemon"),
        ]
    )
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(expires)
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
                ]
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )

    cert_path = cert_dir / "server.crt"
    key_path = cert_dir / "server.key"
    try:
        cert_path.write_bytes(cert_pem)
    except OSError as exc:
        raise CertificateError(f"Failed to write certificate: {exc}") from exc
    try:
        key_path.write_bytes(key_pem)
        if os.name == "posix":
            key_path.chmod(0o600)
    except OSError as exc:
        raise CertificateError(f"Failed to write private key: {exc}") from exc

    readme = _README_TEMPLATE.format(
        generated=now.strftime("%Y-%m-%d %H:%M:%S UTC"),
        expires=expires.strftime("%Y-%m-%d %H:%M:%S UTC"),
    )
    try:
        (cert_dir / "README.md").write_text(readme, encoding="utf-8")
    except OSError as exc:
        raise CertificateError(f"Failed to write README: {exc}") from exc

    logger.info("Generated new self-signed certificate valid for %d days", VALIDITY_DAYS)
    logger.info("Certificate location: %s", cert_path)


def certificate_days_remaining(cert_path: str | Path) -> int:
    """Return whole days until the certificate expires; negative once expired."""
    try:
        cert_pem = Path(cert_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CertificateError(f"Failed to read certificate: {exc}") from exc

    start = cert_pem.find(_BEGIN_MARKER)
    if start < 0:
        raise CertificateError("No certificate found in PEM")
    end = cert_pem.find(_END_MARKER)
    if end < 0:
        raise CertificateError("No certificate end found in PEM")

    section = cert_pem[start : end + len(_END_MARKER)]
    content = "".join(
        line.strip() for line in section.splitlines() if not line.startswith("-----")
    )
    try:
        der = base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CertificateError(f"Failed to decode certificate base64: {exc}") from exc

    try:
        certificate = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise CertificateError(f"Failed to parse certificate: {exc}") from exc

    try:
        expiry = certificate.not_valid_after_utc
    except AttributeError:
        expiry = certificate.not_valid_after.replace(tzinfo=timezone.utc)

    remaining = expiry - datetime.now(timezone.utc)
    return math.trunc(remaining.total_seconds() / 86400)


def get_certificate_info(data_dir: str | Path) -> str:
    """Describe the daemon certificate's validity and location."""
    _, cert_path, _ = _paths(data_dir)
    if not cert_path.exists():
        return "No certificate found"

    days = certificate_days_remaining(cert_path)
    if days < 0:
        status = f"EXPIRED {-days} days ago"
    elif days < _EXPIRY_WARNING_DAYS:
        status = f"Valid for {days} more days (expires soon!)"
    else:
        status = f"Valid for {days} more days"
    return f'Certificate status: {status}\nLocation: "{cert_path}"'