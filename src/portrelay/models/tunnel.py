"""
Tunnel data models.

TunnelSpec describes one configured local -> remote mapping, PendingTunnel
is one accepted connection waiting to be relayed.
"""

import socket
from dataclasses import dataclass, field

from portrelay.exceptions import ConfigFormatError

# Only stream transport is supported
NETWORK_TCP = "tcp"

SPEC_SEPARATOR = ">"


@dataclass(frozen=True)
class TunnelSpec:
    """Static description of one tunnel: where to listen and where to relay."""

    local_address: str
    remote_address: str
    network: str = NETWORK_TCP

    def __str__(self) -> str:
        return f"{self.local_address}{SPEC_SEPARATOR}{self.remote_address}"


@dataclass
class PendingTunnel:
    """An accepted connection together with the spec it was accepted for."""

    connection: socket.socket
    spec: TunnelSpec
    peer: tuple = field(default_factory=tuple)

    @property
    def peer_label(self) -> str:
        if len(self.peer) >= 2:
            return format_host_port(self.peer[0], self.peer[1])
        return "unknown"

    def close(self) -> None:
        """Close the accepted connection without relaying it."""
        try:
            self.connection.close()
        except OSError:
            pass


def parse_tunnel_spec(value: str) -> TunnelSpec:
    """
    Parse a tunnel configuration string.

    Expected format: LOCAL_ADDR>REMOTE_ADDR

    Example:
        0.0.0.0:9090>postgres:5432
        :9090>postgres:5432

    Raises:
        ConfigFormatError: If the string does not hold exactly one separator.
    """
    parts = value.split(SPEC_SEPARATOR)
    if len(parts) != 2:
        raise ConfigFormatError(value)
    return TunnelSpec(local_address=parts[0], remote_address=parts[1])


def split_host_port(address: str) -> tuple[str, int]:
    """
    Split ``host:port``, ``[ipv6]:port`` or ``:port`` into host and port.

    An empty host means every interface. The port may be a number or a
    TCP service name.

    Raises:
        ValueError: If the address is malformed.
    """
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        if address[end + 1 : end + 2] != ":":
            raise ValueError(f"missing port in address {address!r}")
        host = address[1:end]
        port_str = address[end + 2 :]
    else:
        host, sep, port_str = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")

    if not port_str:
        raise ValueError(f"missing port in address {address!r}")

    if port_str.isdigit():
        port = int(port_str)
        if port > 65535:
            raise ValueError(f"invalid port in address {address!r}")
        return host, port

    try:
        return host, socket.getservbyname(port_str, "tcp")
    except OSError as e:
        raise ValueError(f"unknown port {port_str!r} in address {address!r}") from e


def format_host_port(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"
