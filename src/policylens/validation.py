"""Request and URL validation.

Everything here is pure string/URL parsing with no network access. Private and
loopback hosts are rejected before any fetch is attempted; the fetcher
re-runs ``validate_policy_url`` on every redirect hop.
"""

from __future__ import annotations

import ipaddress
import re
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit, urlunsplit

from policylens.errors import ErrorCode, PolicyLensError
from policylens.models.analysis import DocumentType

if TYPE_CHECKING:
    from collections.abc import Mapping

PRIVATE_NETWORKS: list[ipaddress.IPv4Network | ipaddress.IPv6Network] = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_LOCAL_NAME_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^localhost$"),
    re.compile(r"\.localhost$"),
]

# Numeric hosts that ipaddress refuses to parse (e.g. "127.1"). Only applied
# to hosts made of digits and dots, or hex digits and colons.
_NUMERIC_V4_HOST = re.compile(r"^[0-9.]+$")
_NUMERIC_V6_HOST = re.compile(r"^[0-9a-f:.]*:[0-9a-f:.]*$")

_PRIVATE_V4_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),
]

_PRIVATE_V6_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^::1$"),
    re.compile(r"^f[cd][0-9a-f]{2}:"),
    re.compile(r"^fe[89ab][0-9a-f]:"),
]

_DEFAULT_PORTS = {"http": 80, "https": 443}
_EXTENSION_VERSION = re.compile(r"^\d+\.\d+\.\d+$")
_EXTENSION_ORIGIN_PREFIX = "chrome-extension://"

# Strong signals reported by the detect endpoint.
POLICY_INDICATORS: list[re.Pattern[str]] = [
    re.compile(r"privacy\s+policy", re.IGNORECASE),
    re.compile(r"terms\s+of\s+service", re.IGNORECASE),
    re.compile(r"terms\s+and\s+conditions", re.IGNORECASE),
    re.compile(r"data\s+privacy", re.IGNORECASE),
    re.compile(r"cookie\s+policy", re.IGNORECASE),
]

_CONTENT_INDICATORS: list[re.Pattern[str]] = [
    *POLICY_INDICATORS,
    re.compile(r"information\s+we\s+collect", re.IGNORECASE),
    re.compile(r"how\s+we\s+use\s+your\s+information", re.IGNORECASE),
    re.compile(r"your\s+rights", re.IGNORECASE),
    re.compile(r"data\s+processing", re.IGNORECASE),
]


def _invalid_url(message: str) -> PolicyLensError:
    return PolicyLensError(
        code=ErrorCode.INVALID_URL,
        message=message,
        suggestion="Provide a public http(s) URL of the policy page.",
        recoverable=False,
    )


def is_private_host(hostname: str) -> bool:
    """True for localhost, loopback, RFC1918, link-local and unique-local hosts."""
    host = hostname.strip("[]").rstrip(".").lower()
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        pass  # Domain name or non-canonical numeric form, fall through to patterns
    else:
        if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        return any(addr in net for net in PRIVATE_NETWORKS)
    if any(pattern.search(host) for pattern in _LOCAL_NAME_PATTERNS):
        return True
    if _NUMERIC_V4_HOST.match(host):
        return any(pattern.search(host) for pattern in _PRIVATE_V4_PATTERNS)
    if _NUMERIC_V6_HOST.match(host):
        return any(pattern.search(host) for pattern in _PRIVATE_V6_PATTERNS)
    return False


def validate_policy_url(url: Any) -> str:
    """Return the normalized absolute form of ``url`` or raise INVALID_URL.

    Normalization lower-cases scheme and host, drops default ports and the
    fragment, and turns an empty path into ``/``. The query string is kept.
    """
    if not isinstance(url, str) or not url.strip():
        raise _invalid_url("URL is required and must be a string")

    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname or ""
        port = parts.port
    except ValueError as exc:
        raise _invalid_url(f"Invalid URL format: {exc}") from exc

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS:
        raise _invalid_url("URL must use HTTP or HTTPS protocol")
    if not hostname:
        raise _invalid_url("URL must have a valid hostname")
    if is_private_host(hostname):
        raise _invalid_url("Private/localhost URLs are not allowed")

    host = f"[{hostname}]" if ":" in hostname else hostname
    netloc = host if port in (None, _DEFAULT_PORTS[scheme]) else f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, ""))


def validate_document_type(value: Any) -> DocumentType:
    if value is None:
        return DocumentType.PRIVACY
    try:
        return DocumentType(value)
    except ValueError as exc:
        raise PolicyLensError(
            code=ErrorCode.INVALID_REQUEST,
            message=f"Unsupported document type: {value!r}",
            suggestion="Use 'privacy' or 'terms'.",
            recoverable=False,
        ) from exc


def validate_extension_request(headers: Mapping[str, str]) -> str | None:
    """Check extension origin and version headers.

    Returns ``None`` when the request is acceptable, otherwise the reason it
    is not. Header lookups are expected to be case-insensitive.
    """
    origin = headers.get("origin", "")
    if origin and not origin.startswith(_EXTENSION_ORIGIN_PREFIX):
        return "Invalid origin"

    version = headers.get("x-extension-version", "")
    if not version:
        return "Extension authentication required"
    if not _EXTENSION_VERSION.match(version):
        return "Invalid extension version"
    return None


def match_policy_indicators(content: str) -> list[str]:
    """Return the source pattern of every detect indicator found in ``content``."""
    return [pattern.pattern for pattern in POLICY_INDICATORS if pattern.search(content)]


def is_likely_policy_content(text: str) -> bool:
    """Heuristic: at least two policy phrases appear in the text."""
    return sum(1 for pattern in _CONTENT_INDICATORS if pattern.search(text)) >= 2
