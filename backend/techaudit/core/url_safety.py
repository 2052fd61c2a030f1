"""
URL validation boundary.

The caller validates the top-level URL; analyzers re-check every URL they
discover (redirect targets, sitemap entries, canonical targets) before
requesting it.
"""
import ipaddress
from urllib.parse import urlparse

from techaudit.core.exceptions import UrlValidationError

ALLOWED_SCHEMES = ("http", "https")
MAX_URL_LENGTH = 2048
BLOCKED_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}
BLOCKED_TLDS = {"test", "localhost", "local"}
SUSPICIOUS_PATTERNS = ("..", "file://", "javascript:", "data:")


def is_absolute_url(value: str | None) -> bool:
    """True for an http(s) URL with a host."""
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = urlparse(value.strip())
    except ValueError:
        return False
    return parsed.scheme in ALLOWED_SCHEMES and bool(parsed.netloc) and bool(parsed.hostname)


def _is_blocked_ip(host: str) -> bool:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def check_url(url: str) -> str | None:
    """Return the reason a URL is rejected, or None if it is acceptable."""
    if not url or not isinstance(url, str):
        return "URL is empty"
    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        return f"URL exceeds {MAX_URL_LENGTH} characters"

    lowered = url.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern in lowered:
            return f"URL contains suspicious pattern '{pattern}'"

    try:
        parsed = urlparse(url)
        host = parsed.hostname
        parsed.port  # raises ValueError on an out-of-range port
    except ValueError:
        return "URL could not be parsed"

    if parsed.scheme not in ALLOWED_SCHEMES:
        return f"Scheme '{parsed.scheme}' is not allowed"
    if not host:
        return "URL has no host"

    host = host.rstrip(".")
    if host in BLOCKED_HOSTS:
        return f"Host '{host}' is blocked"
    if _is_blocked_ip(host):
        return f"Host '{host}' is a private or reserved address"

    tld = host.rsplit(".", 1)[-1]
    if tld in BLOCKED_TLDS:
        return f"Top-level domain '.{tld}' is blocked"
    return None


def is_safe_url(url: str) -> bool:
    return check_url(url) is None


def validate_url(url: str) -> str:
    """
    Validate a URL for analysis.

    Returns:
        The stripped URL

    Raises:
        UrlValidationError: if the URL fails any check
    """
    reason = check_url(url)
    if reason:
        raise UrlValidationError(url, reason)
    return url.strip()
