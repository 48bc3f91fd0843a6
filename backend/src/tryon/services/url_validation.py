"""Remote URL validation for user-supplied image and webhook URLs.

Every URL we forward to the provider is vetted here first so the gateway
cannot be used to make the provider (or us) fetch loopback or private
network addresses.
"""

import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import SplitResult, urlsplit

DEFAULT_MAX_URL_LENGTH = 2048

URL_INVALID_LENGTH = "URL_INVALID_LENGTH"
URL_MALFORMED = "URL_MALFORMED"
URL_PROTOCOL_NOT_ALLOWED = "URL_PROTOCOL_NOT_ALLOWED"
URL_PRIVATE_HOST = "URL_PRIVATE_HOST"
URL_HOST_NOT_WHITELISTED = "URL_HOST_NOT_WHITELISTED"

ALLOWED_SCHEMES = frozenset({"http", "https"})
PRIVATE_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "::1"})
PRIVATE_IPV4_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
    ipaddress.IPv4Network("127.0.0.0/8"),
    ipaddress.IPv4Network("0.0.0.0/8"),
    ipaddress.IPv4Network("169.254.0.0/16"),
)

# Hex ("0x7f"), octal ("0177") and decimal labels all make a host numeric
_NUMERIC_LABEL = re.compile(r"^(0x[0-9a-f]*|\d+)$")
# Characters that cannot appear in a host name (brackets and ":" are IPv6 syntax)
_FORBIDDEN_HOST_CHARS = frozenset(" \t\n\r#%/<>?@\\^|")

_FAILURE_MESSAGES = {
    URL_INVALID_LENGTH: "image URL exceeds maximum allowed length",
    URL_MALFORMED: "image URL must be a valid URL",
    URL_PROTOCOL_NOT_ALLOWED: "image URL must use http or https",
    URL_PRIVATE_HOST: "image URL host is not allowed",
    URL_HOST_NOT_WHITELISTED: "image URL host is not whitelisted",
}


@dataclass(frozen=True)
class UrlValidationResult:
    """Outcome of validate_remote_url.

    Attributes:
        valid: True when every check passed
        parsed: Split URL (only set when valid)
        reason: Failure reason code (only set when invalid)
    """

    valid: bool
    parsed: SplitResult | None = None
    reason: str | None = None


def canonicalize_ipv4(host: str) -> str | None:
    """Dotted-quad form of a numeric IPv4 host, or None for a domain name.

    Accepts every form inet_aton does ("2130706433", "0x7f000001",
    "127.1", "0177.0.0.1"), so numeric spellings of a private address
    cannot slip past the range check.

    Raises:
        ValueError: If every label is numeric but the address is out of range
    """
    labels = host.split(".")
    if len(labels) > 1 and labels[-1] == "":
        labels = labels[:-1]
    if not labels or not all(_NUMERIC_LABEL.match(label) for label in labels):
        return None
    try:
        packed = socket.inet_aton(".".join(labels))
    except OSError as e:
        raise ValueError(f"invalid IPv4 address: {host}") from e
    return str(ipaddress.IPv4Address(packed))


def is_private_ipv4(host: str) -> bool:
    try:
        canonical = canonicalize_ipv4(host)
    except ValueError:
        return False
    if canonical is None:
        return False
    address = ipaddress.IPv4Address(canonical)
    return any(address in network for network in PRIVATE_IPV4_NETWORKS)


def _is_private_ipv6(host: str) -> bool:
    address = ipaddress.IPv6Address(host)
    if address.is_loopback:
        return True
    mapped = address.ipv4_mapped
    return mapped is not None and is_private_ipv4(str(mapped))


def validate_remote_url(
    value: str,
    max_length: int = DEFAULT_MAX_URL_LENGTH,
    allowed_hosts: Iterable[str] | None = None,
) -> UrlValidationResult:
    """Validate a user-supplied URL before any network call is made on its behalf.

    Checks run in order and the first failure wins:
    length, parseability, scheme, private/loopback host, host allow-list.
    Numeric IPv4 hosts are compared in canonical dotted-quad form.

    Args:
        value: Raw URL string
        max_length: Maximum accepted length in characters (default: 2048)
        allowed_hosts: Optional allow-list of lower-case hostnames

    Returns:
        UrlValidationResult with either `parsed` or `reason` populated

    Example:
        >>> validate_remote_url("ftp://example.com/a.jpg").reason
        'URL_PROTOCOL_NOT_ALLOWED'
    """
    if not value or len(value) > max_length:
        return UrlValidationResult(valid=False, reason=URL_INVALID_LENGTH)

    try:
        parsed = urlsplit(value)
        hostname = parsed.hostname
        # Accessing .port validates the port component
        parsed.port
    except ValueError:
        return UrlValidationResult(valid=False, reason=URL_MALFORMED)

    if not parsed.scheme:
        return UrlValidationResult(valid=False, reason=URL_MALFORMED)

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return UrlValidationResult(valid=False, reason=URL_PROTOCOL_NOT_ALLOWED)

    if not parsed.netloc or not hostname:
        return UrlValidationResult(valid=False, reason=URL_MALFORMED)

    hostname = hostname.lower()

    if any(char in _FORBIDDEN_HOST_CHARS for char in hostname):
        return UrlValidationResult(valid=False, reason=URL_MALFORMED)

    if ":" in hostname:
        try:
            private = _is_private_ipv6(hostname)
        except ValueError:
            return UrlValidationResult(valid=False, reason=URL_MALFORMED)
    else:
        try:
            hostname = canonicalize_ipv4(hostname) or hostname
        except ValueError:
            return UrlValidationResult(valid=False, reason=URL_MALFORMED)
        private = hostname in PRIVATE_HOSTNAMES or is_private_ipv4(hostname)

    if private:
        return UrlValidationResult(valid=False, reason=URL_PRIVATE_HOST)

    if allowed_hosts is not None and hostname not in allowed_hosts:
        return UrlValidationResult(valid=False, reason=URL_HOST_NOT_WHITELISTED)

    return UrlValidationResult(valid=True, parsed=parsed)


def describe_url_failure(reason: str | None) -> str:
    """Client-facing message for a validation failure reason."""
    return _FAILURE_MESSAGES.get(reason or "", "invalid image URL")
