"""Lookup of this machine's externally reachable address."""

from __future__ import annotations

import contextlib
import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .errors import NetworkLookupError
from .logging import get_logger

logger = get_logger("grid.node.network")

# Never contacted; connecting a UDP socket only selects the outbound interface.
_PROBE_ADDRESS = ("10.255.255.255", 1)


@dataclass(frozen=True)
class LocalAddress:
    """Non-loopback IPv4 address of this machine and its host name."""

    address: str
    hostname: str


AddressLookup = Callable[[], LocalAddress]


def _is_usable(candidate: str) -> bool:
    try:
        parsed = ipaddress.IPv4Address(candidate)
    except ValueError:
        return False
    return not (parsed.is_loopback or parsed.is_unspecified or parsed.is_link_local)


def _resolver_candidates() -> Iterable[str]:
    with contextlib.suppress(OSError):
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            yield str(info[4][0])


def _route_candidate() -> Optional[str]:
    with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_DGRAM)) as sock:
        try:
            sock.connect(_PROBE_ADDRESS)
            return str(sock.getsockname()[0])
        except OSError:
            return None


def _hostname_for(address: str) -> str:
    try:
        return socket.gethostbyaddr(address)[0]
    except OSError:
        return socket.getfqdn()


def non_loopback_ipv4_address() -> LocalAddress:
    """Return the first non-loopback IPv4 address of this machine."""

    route = _route_candidate()
    candidates = [route] if route else []
    candidates.extend(_resolver_candidates())
    for candidate in candidates:
        if _is_usable(candidate):
            local = LocalAddress(address=candidate, hostname=_hostname_for(candidate))
            logger.debug(
                "Found non-loopback address",
                extra={"address": local.address, "hostname": local.hostname},
            )
            return local
    raise NetworkLookupError("Could not find a non-loopback ip4 address for this machine")


def fix_up_host(host: Optional[str], lookup: Optional[AddressLookup] = None) -> str:
    """Replace the ``ip``/``host`` sentinels (or a missing host) with a real one."""

    if host is not None and host.lower() not in {"ip", "host"}:
        return host
    local = (lookup or non_loopback_ipv4_address)()
    if host is not None and host.lower() == "host":
        return local.hostname
    return local.address
