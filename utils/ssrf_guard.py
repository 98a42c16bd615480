"""
SSRF protection for outbound fetches.

Resolves the target host to every IPv4 and IPv6 address it has and
rejects the request when ANY of them falls in a blocked range. The page
fetcher calls ``check`` before every hop, redirects included.
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Iterable, List, Optional, Union
from urllib.parse import urlsplit

from config import Settings, settings as default_settings
from models.errors import NoResolution, PrivateAddressBlocked
from utils.audit import audit_log

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# host, port -> resolved address strings
Resolver = Callable[[str, int], Awaitable[List[str]]]


def parse_networks(cidrs: Iterable[str]) -> List[IPNetwork]:
    return [ipaddress.ip_network(cidr, strict=False) for cidr in cidrs]


def is_blocked_ip(ip_str: str, networks: Iterable[IPNetwork]) -> bool:
    """
    Check if an IP address falls in any of the given networks.

    IPv4 addresses embedded in IPv6 (mapped ``::ffff:10.0.0.1``, 6to4
    ``2002::/16`` and Teredo) are checked in their IPv4 form as well.
    Unparseable addresses count as blocked.

    Args:
        ip_str: IP address string
        networks: Blocked networks

    Returns:
        True if the address must not be contacted
    """
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        return True

    candidates: List[IPAddress] = [ip]
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            candidates.append(ip.ipv4_mapped)
        if ip.sixtofour is not None:
            candidates.append(ip.sixtofour)
        if ip.teredo is not None:
            candidates.append(ip.teredo[1])

    for candidate in candidates:
        for network in networks:
            # Containment is only defined within one address family
            if candidate.version == network.version and candidate in network:
                return True
    return False


async def system_resolver(host: str, port: int) -> List[str]:
    """Resolve ``host`` through the event loop's getaddrinfo."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    addresses: List[str] = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        address = sockaddr[0].split("%", 1)[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


class SsrfGuard:
    """
    DNS-resolving SSRF check.

    Args:
        settings: Application settings (blocked_ip_ranges)
        resolver: Async resolver override, used by tests
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        resolver: Optional[Resolver] = None,
    ):
        self.settings = settings or default_settings
        self.networks = parse_networks(self.settings.blocked_ip_ranges)
        self._resolver = resolver or system_resolver

    async def resolve(self, host: str, port: int) -> List[str]:
        """
        Resolve a host to all of its addresses.

        Raises:
            NoResolution: If the lookup fails or yields no address
        """
        try:
            addresses = await self._resolver(host, port)
        except (socket.gaierror, UnicodeError, OSError) as e:
            logger.warning(f"DNS resolution failed for {host}: {e}")
            raise NoResolution(
                f"Could not resolve hostname: {host}",
                {"hostname": host},
            ) from e

        if not addresses:
            raise NoResolution(
                f"Could not resolve hostname: {host}",
                {"hostname": host},
            )
        return addresses

    async def check(self, url: str, client_identity: Optional[str] = None) -> List[str]:
        """
        Verify that a URL's host resolves only to public addresses.

        Args:
            url: Absolute http(s) URL
            client_identity: Requesting client, recorded in the audit event

        Returns:
            The resolved addresses

        Raises:
            NoResolution: If the host does not resolve
            PrivateAddressBlocked: If any address is in a blocked range
        """
        parsed = urlsplit(url)
        hostname = (parsed.hostname or "").lower()
        if not hostname:
            raise NoResolution("URL has no hostname", {"url": url})

        try:
            port = parsed.port or (443 if parsed.scheme == "https" else 80)
        except ValueError:
            port = 443 if parsed.scheme == "https" else 80

        addresses = await self.resolve(hostname, port)

        for address in addresses:
            if is_blocked_ip(address, self.networks):
                audit_log("WARN", "SSRF attempt blocked", {
                    "url": url,
                    "hostname": hostname,
                    "resolved_ip": address,
                    "client_identity": client_identity or "unknown",
                })
                raise PrivateAddressBlocked(
                    "Access to private or internal addresses is not allowed",
                    {"hostname": hostname},
                )

        return addresses
