import ipaddress
import socket
from urllib.parse import urlsplit

from canarywatch.core.config import get_settings

ALLOWED_SCHEMES = frozenset({"http", "https"})


class UnsafeUrlError(ValueError):
    pass


class HostNotAllowedError(ValueError):
    pass


def _is_internal_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast or ip.is_unspecified


def resolves_to_internal(host: str) -> bool:
    """True when any address the host resolves to is internal. Unresolvable hosts count as internal."""
    try:
        infos = socket.getaddrinfo(host, None)
    except socket.gaierror:
        return True
    return any(_is_internal_address(info[4][0]) for info in infos)


def host_in_allowlist(host: str, allowlist: list[str]) -> bool:
    return any(host == allowed or host.endswith(f".{allowed}") for allowed in allowlist)


def assert_allowed_url(url: str, resolve: bool = True) -> None:
    """Guard outbound fetches of discovered URLs.

    Only http(s) is fetched, hosts resolving to internal ranges are refused
    and, when ``allowed_fetch_hosts`` is set, the host or one of its parent
    domains must be listed.
    """
    parts = urlsplit(url)
    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeUrlError(f"Unsupported URL scheme: {parts.scheme or 'none'}")
    host = (parts.hostname or "").lower()
    if not host:
        raise UnsafeUrlError("URL host is missing")
    if resolve and resolves_to_internal(host):
        raise UnsafeUrlError(f"Host resolves to an internal address: {host}")

    allowlist = get_settings().allowed_fetch_host_list
    if allowlist and not host_in_allowlist(host, allowlist):
        raise HostNotAllowedError(f"Host not in allowlist: {host}")
