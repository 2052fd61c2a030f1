"""
TLS certificate inspection.

Opens a raw TLS connection and reads the peer certificate. Verification is
turned off so that self-signed and expired certificates can still be
described; the certificate is parsed from DER with cryptography because
ssl.getpeercert() returns an empty dict for unverified peers.
"""
import asyncio
import logging
import socket
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cryptography import x509
from cryptography.x509.oid import NameOID

from techaudit.config import settings
from techaudit.core.exceptions import FetchError

logger = logging.getLogger(__name__)


@dataclass
class CertificateInfo:
    issuer: str
    subject: str
    valid_from: datetime
    valid_to: datetime
    self_signed: bool
    key_size_bits: int | None = None
    signature_algorithm: str = ""
    san_domains: list[str] = field(default_factory=list)

    def days_until_expiry(self, now: datetime) -> int:
        return (self.valid_to - now).days

    def is_expired(self, now: datetime) -> bool:
        return now > self.valid_to

    def to_dict(self) -> dict[str, Any]:
        return {
            "issuer": self.issuer,
            "subject": self.subject,
            "valid_from": self.valid_from.isoformat(),
            "valid_to": self.valid_to.isoformat(),
            "is_self_signed": self.self_signed,
            "key_size": self.key_size_bits,
            "signature_algorithm": self.signature_algorithm,
            "san_domains": list(self.san_domains),
        }


def _common_name(name: x509.Name) -> str:
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if attrs:
        return str(attrs[0].value)
    return name.rfc4514_string()


def parse_certificate(der: bytes) -> CertificateInfo:
    """Build CertificateInfo from a DER-encoded certificate."""
    cert = x509.load_der_x509_certificate(der)

    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        san_domains = san.value.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        san_domains = []

    hash_algorithm = cert.signature_hash_algorithm
    signature_algorithm = hash_algorithm.name if hash_algorithm else cert.signature_algorithm_oid.dotted_string

    return CertificateInfo(
        issuer=_common_name(cert.issuer),
        subject=_common_name(cert.subject),
        valid_from=cert.not_valid_before_utc,
        valid_to=cert.not_valid_after_utc,
        self_signed=cert.issuer == cert.subject,
        key_size_bits=getattr(cert.public_key(), "key_size", None),
        signature_algorithm=signature_algorithm,
        san_domains=list(san_domains),
    )


class CertificateInspector:
    """Reads the certificate a host presents on a TLS handshake."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.TLS_TIMEOUT

    def _fetch_der(self, host: str, port: int) -> bytes:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as tls_sock:
                der = tls_sock.getpeercert(binary_form=True)
        if not der:
            raise ssl.SSLError("Peer presented no certificate")
        return der

    async def inspect(self, host: str, port: int = 443) -> CertificateInfo:
        """
        Raises:
            FetchError: handshake failed or the certificate could not be parsed
        """
        logger.info(f"[TLS] Inspecting certificate for {host}:{port}")
        try:
            der = await asyncio.wait_for(
                asyncio.to_thread(self._fetch_der, host, port),
                timeout=self.timeout + 1,
            )
        except asyncio.TimeoutError:
            raise FetchError(f"{host}:{port}", "TLS handshake timeout")
        except (OSError, ssl.SSLError) as e:
            logger.warning(f"[TLS] Handshake with {host}:{port} failed: {e}")
            raise FetchError(f"{host}:{port}", f"TLS connection failed: {e}")

        try:
            return parse_certificate(der)
        except ValueError as e:
            raise FetchError(f"{host}:{port}", f"Could not parse certificate: {e}")
