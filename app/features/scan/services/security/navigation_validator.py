"""
SSRF guard for page scans.

The browser follows redirects on its own, so the only reliable place to check
where a scan really ended up is after navigation: ``validate`` looks at the
landed URL and rejects it when the host is an internal name or resolves to an
internal address. ``validate_target`` applies the same policy to a URL before
any navigation happens.
"""
import ipaddress
import re
import socket
from dataclasses import dataclass
from typing import Callable, List, Optional
from urllib.parse import urlparse

from app.platform.logger import get_logger

logger = get_logger(__name__)

CLOUD_METADATA_ADDRESSES = frozenset({"169.254.169.254", "fd00:ec2::254"})

BLOCKED_HOSTNAME_PATTERNS = [
    re.compile(r"^localhost$", re.I),
    re.compile(r"\.localhost$", re.I),
    re.compile(r"\.local$", re.I),
    re.compile(r"\.internal$", re.I),
    re.compile(r"\.test$", re.I),
    re.compile(r"\.example$", re.I),
    re.compile(r"\.invalid$", re.I),
    re.compile(r"^metadata\.google\.internal$", re.I),
]

Resolver = Callable[[str], List[str]]


@dataclass(frozen=True)
class NavigationVerdict:
    allowed: bool
    reason: Optional[str] = None
    host: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def ok(cls, host: Optional[str] = None) -> "NavigationVerdict":
        return cls(allowed=True, host=host)

    @classmethod
    def blocked(cls, reason: str, host: Optional[str] = None, address: Optional[str] = None) -> "NavigationVerdict":
        return cls(allowed=False, reason=reason, host=host, address=address)


def resolve_host(hostname: str) -> List[str]:
    """All addresses a hostname resolves to (IPv4 and IPv6)."""
    infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    addresses = []
    for info in infos:
        address = info[4][0].split("%", 1)[0]  # strip IPv6 zone id
        if address not in addresses:
            addresses.append(address)
    return addresses


def _parse_ip(value: str):
    try:
        return ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return None


def is_blocked_address(address: str) -> bool:
    """True for loopback, link-local, private, reserved and metadata addresses."""
    ip = _parse_ip(address)
    if ip is None:
        return False

    if str(ip) in CLOUD_METADATA_ADDRESSES:
        return True

    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ip.ipv4_mapped or ip.sixtofour
        if mapped is not None and is_blocked_address(str(mapped)):
            return True

    return (
        ip.is_loopback
        or ip.is_link_local
        or ip.is_private
        or ip.is_reserved
        or ip.is_unspecified
        or ip.is_multicast
    )


def is_blocked_hostname(hostname: str) -> bool:
    """Literal hostname policy, applied before any DNS lookup."""
    hostname = hostname.rstrip(".").lower()
    if not hostname:
        return True

    if _parse_ip(hostname) is not None:
        return is_blocked_address(hostname)

    if any(pattern.search(hostname) for pattern in BLOCKED_HOSTNAME_PATTERNS):
        return True

    # Single-label names only make sense on an internal network
    return "." not in hostname


class NavigationValidator:
    """Decides whether a URL is a safe destination to analyze."""

    def __init__(self, resolver: Optional[Resolver] = None):
        self._resolver = resolver

    def validate_target(self, url: str) -> NavigationVerdict:
        try:
            parsed = urlparse(url)
            hostname = parsed.hostname
        except ValueError:
            return NavigationVerdict.blocked("unparseable URL")

        if parsed.scheme not in ("http", "https"):
            return NavigationVerdict.blocked(f"scheme not allowed: {parsed.scheme or 'none'}", host=hostname)

        if not hostname:
            return NavigationVerdict.blocked("missing host")

        if is_blocked_hostname(hostname):
            address = hostname if _parse_ip(hostname) is not None else None
            return NavigationVerdict.blocked("internal hostname", host=hostname, address=address)

        if _parse_ip(hostname) is not None:
            return NavigationVerdict.ok(host=hostname)

        try:
            addresses = (self._resolver or resolve_host)(hostname)
        except (socket.gaierror, UnicodeError, OSError) as e:
            return NavigationVerdict.blocked(f"host did not resolve: {e}", host=hostname)

        if not addresses:
            return NavigationVerdict.blocked("host did not resolve", host=hostname)

        for address in addresses:
            if is_blocked_address(address):
                return NavigationVerdict.blocked("resolves to internal address", host=hostname, address=address)

        return NavigationVerdict.ok(host=hostname)

    def validate(self, requested_url: str, final_url: str) -> NavigationVerdict:
        """
        Check the URL the browser actually landed on.

        Every landed URL is checked, including when no redirect happened:
        DNS for the requested host may have changed since it was first checked.
        """
        verdict = self.validate_target(final_url)
        if not verdict.allowed:
            logger.warning(
                f"Blocked navigation {requested_url} -> {final_url}: "
                f"{verdict.reason} (host={verdict.host}, address={verdict.address})"
            )
        return verdict


_default_validator = NavigationValidator()


def validate(requested_url: str, final_url: str) -> NavigationVerdict:
    return _default_validator.validate(requested_url, final_url)


def validate_target(url: str) -> NavigationVerdict:
    return _default_validator.validate_target(url)
