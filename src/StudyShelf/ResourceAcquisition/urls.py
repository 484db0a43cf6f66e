"""Upstream URL policy for the backend document proxy.

The proxy only fetches from configured hosts. A host entry matches itself
and its subdomains; an empty allow-list admits any public host. Literal
addresses in private, loopback, link-local, multicast or reserved ranges
are refused whatever the allow-list says, as are ``localhost`` names.
"""

from __future__ import annotations

import ipaddress
from typing import Optional, Sequence
from urllib.parse import urlsplit

from StudyShelf.ResourceAcquisition.errors import InvalidArgumentError

_LOCAL_NAMES = ("localhost", "localhost.localdomain")


def _host_allowed(host: str, allowed_hosts: Sequence[str]) -> bool:
    if not allowed_hosts:
        return True
    for entry in allowed_hosts:
        entry = entry.lower().rstrip(".")
        if host == entry or host.endswith(f".{entry}"):
            return True
    return False


def _is_internal_address(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_multicast
        or address.is_reserved
        or address.is_unspecified
    )


def check_upstream_url(url: str, allowed_hosts: Sequence[str] = ()) -> str:
    """Validate a URL the proxy is asked to fetch.

    Args:
        url: Requested upstream URL
        allowed_hosts: Host allow-list (empty admits any public host)

    Returns:
        The URL unchanged

    Raises:
        InvalidArgumentError: Scheme, credentials, host or address not allowed
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        raise InvalidArgumentError("Only http(s) URLs can be proxied", url=url)
    if parts.username or parts.password:
        raise InvalidArgumentError("Credentials are not allowed in proxied URLs", url=url)

    host: Optional[str] = parts.hostname
    if not host:
        raise InvalidArgumentError("URL has no host", url=url)
    host = host.rstrip(".")

    if host in _LOCAL_NAMES or host.endswith(".localhost") or _is_internal_address(host):
        raise InvalidArgumentError(f"Refusing to proxy internal address {host}", url=url)
    if not _host_allowed(host, allowed_hosts):
        raise InvalidArgumentError(f"Host not allowed for proxying: {host}", url=url, detail={"host": host})
    return url


__all__ = ["check_upstream_url"]
