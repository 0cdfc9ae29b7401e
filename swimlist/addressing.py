"""Resolution of advertised and bootstrap member addresses."""

from __future__ import annotations

import socket
from collections.abc import Iterable

from swimlist.transport import Address

# Connecting a datagram socket sends nothing; it only selects the outgoing interface.
_ROUTE_PROBE = ("8.8.8.8", 80)


def _split_host_port(address: str) -> tuple[str, str]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    return host, port


def _resolve_udp(address: str) -> Address:
    host, port = _split_host_port(address)
    try:
        infos = socket.getaddrinfo(host or None, port, type=socket.SOCK_DGRAM)
    except socket.gaierror as exc:
        raise ValueError(f"cannot resolve {address!r}: {exc}") from exc
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    sockaddr = infos[0][4]
    return sockaddr[0], sockaddr[1]


def _local_ip_address() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(_ROUTE_PROBE)
        return sock.getsockname()[0]


def resolve_advertise_address(advertise_address: str, bind_address: str) -> Address:
    """Return the address other members should use to reach this member.

    An explicit ``advertise_address`` is resolved directly. Otherwise the port of
    ``bind_address`` is combined with the IP of the outgoing network interface.
    """
    if advertise_address:
        try:
            return _resolve_udp(advertise_address)
        except ValueError as exc:
            raise ValueError(f"resolving advertise address: {exc}") from exc

    _, port = _split_host_port(bind_address)
    typed_port = int(port)
    return _local_ip_address(), typed_port


def resolve_bootstrap_members(bootstrap_members: Iterable[str]) -> list[Address]:
    """Resolve every bootstrap member address.

    Failures are collected and raised together as an :class:`ExceptionGroup`.
    """
    result: list[Address] = []
    errors: list[Exception] = []
    for member in bootstrap_members:
        try:
            result.append(_resolve_udp(member))
        except ValueError as exc:
            errors.append(ValueError(f"resolving member {member!r}: {exc}"))
    if errors:
        raise ExceptionGroup("resolving bootstrap members", errors)
    return result