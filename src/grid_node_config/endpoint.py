"""Hub endpoint and advertised address resolution."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from .errors import IncompleteEndpoint, InvalidEndpoint
from .logging import get_logger

DEFAULT_NODE_HOST = "localhost"
DEFAULT_NODE_PORT = 5555

_DEFAULT_SCHEME_PORTS = {"http": 80, "https": 443}

logger = get_logger("grid.node.endpoint")


def _url_host(host: str) -> str:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return host
    return f"[{host}]" if address.version == 6 else host


@dataclass(frozen=True)
class HostPort:
    """A resolved network location."""

    host: str
    port: int

    def url(self, scheme: str = "http") -> str:
        return f"{scheme}://{_url_host(self.host)}:{self.port}"


def parse_hub_url(hub: str) -> HostPort:
    """Parse a hub URL such as ``http://grid.example:4444``."""

    try:
        parts = urlsplit(str(hub).strip())
        scheme = parts.scheme.lower()
        host = parts.hostname
        port = parts.port
    except ValueError as exc:
        raise InvalidEndpoint(f"hub must be a valid url: {hub}") from exc
    if scheme not in _DEFAULT_SCHEME_PORTS or not host:
        raise InvalidEndpoint(f"hub must be a valid url: {hub}")
    if port is None:
        port = _DEFAULT_SCHEME_PORTS[scheme]
    return HostPort(host=host, port=port)


def resolve_hub_endpoint(
    hub: Optional[str],
    hub_host: Optional[str],
    hub_port: Optional[int],
) -> HostPort:
    """Resolve the hub location; an explicit ``hub`` URL takes precedence."""

    if hub is not None:
        endpoint = parse_hub_url(hub)
        source = "hub"
    elif hub_host is not None or hub_port is not None:
        if hub_host is None:
            raise IncompleteEndpoint("must specify hubHost (or hub) when hubPort is set")
        if hub_port is None:
            raise IncompleteEndpoint("must specify hubPort (or hub) when hubHost is set")
        endpoint = HostPort(host=hub_host, port=int(hub_port))
        source = "hubHost/hubPort"
    else:
        raise InvalidEndpoint("hub must be a valid url: no hub, hubHost or hubPort configured")
    logger.debug(
        "Resolved hub endpoint",
        extra={"hub_host": endpoint.host, "hub_port": endpoint.port, "source": source},
    )
    return endpoint


def advertised_address(
    host: Optional[str],
    port: Optional[int],
    remote_host: Optional[str] = None,
) -> str:
    """Return the address the node reports to the hub."""

    if remote_host is not None:
        return remote_host
    return HostPort(
        host=host if host is not None else DEFAULT_NODE_HOST,
        port=port if port is not None else DEFAULT_NODE_PORT,
    ).url()
