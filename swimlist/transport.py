"""Transports for moving datagrams between members, plus in-memory and test doubles."""

from __future__ import annotations

import abc
import ipaddress
import random
import threading
from dataclasses import dataclass, field

Address = tuple[str, int]
"""A member address as host and port."""


class TransportError(Exception):
    """Raised when a transport fails to deliver a datagram."""


class Transport(abc.ABC):
    """Sends datagrams to members."""

    @abc.abstractmethod
    def send(self, address: Address, buffer: bytes) -> None:
        """Transmit ``buffer`` to the member at ``address``."""


class Target(abc.ABC):
    """Receives incoming datagrams."""

    @abc.abstractmethod
    def dispatch_datagram(self, buffer: bytes) -> None:
        """Process one received datagram."""


class Discard(Transport):
    """A transport that drops everything and always reports success."""

    def send(self, address: Address, buffer: bytes) -> None:
        return None


class FailingTransport(Transport):
    """A transport that always fails."""

    def send(self, address: Address, buffer: bytes) -> None:
        raise TransportError("some transport error occurred")


@dataclass
class Store(Transport):
    """A transport that records every send and always reports success."""

    addresses: list[Address] = field(default_factory=list)
    buffers: list[bytes] = field(default_factory=list)

    def send(self, address: Address, buffer: bytes) -> None:
        self.addresses.append(address)
        self.buffers.append(buffer)

    def clear(self) -> None:
        """Forget all recorded sends."""
        self.addresses.clear()
        self.buffers.clear()


@dataclass
class Unreliable(Transport):
    """Forwards only a share of sends to another transport, simulating a lossy network.

    ``reliability`` ranges from 0.0 (never forward) to 1.0 (always forward).
    """

    transport: Transport
    reliability: float
    rng: random.Random = field(default_factory=random.Random)

    def send(self, address: Address, buffer: bytes) -> None:
        if self.rng.random() > self.reliability:
            return
        self.transport.send(address, buffer)


def _address_sort_key(address: Address) -> tuple[int, bytes, str, int]:
    host, port = address
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return (1, b"", host, port)
    return (0, ip.packed, "", port)


class Memory:
    """Moves datagrams between registered targets through memory.

    Delivery happens only when pending sends are flushed, which makes it
    possible to guarantee delivery in tests.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._targets: dict[Address, Target] = {}
        self._pending: dict[Address, list[bytes]] = {}

    def client(self) -> MemoryClient:
        """Return a transport that sends through this memory instance."""
        return MemoryClient(self)

    def add_target(self, address: Address, target: Target) -> None:
        """Register ``target`` to receive datagrams sent to ``address``."""
        with self._lock:
            self._targets[address] = target

    def add_pending_send(self, address: Address, buffer: bytes) -> None:
        """Queue ``buffer`` for later delivery to ``address``."""
        with self._lock:
            self._pending.setdefault(address, []).append(buffer)

    def flush_pending_sends(self, address: Address) -> bool:
        """Deliver everything queued for ``address``.

        Returns whether anything was delivered. Queued datagrams for an address
        without a registered target are dropped. Errors raised by the target are
        collected and raised together as an :class:`ExceptionGroup` after all
        datagrams were dispatched.
        """
        # The lock is not held while dispatching, since targets may send again.
        with self._lock:
            pending = self._pending.pop(address, None)
            target = self._targets.get(address)
        if pending is None or target is None:
            return False

        errors: list[Exception] = []
        for buffer in pending:
            try:
                target.dispatch_datagram(buffer)
            except Exception as exc:
                errors.append(exc)
        if errors:
            raise ExceptionGroup(f"dispatching pending sends to {address!r}", errors)
        return True

    def flush_all_pending_sends(self) -> None:
        """Flush all registered targets repeatedly until nothing is left to deliver."""
        errors: list[Exception] = []
        repeat = True
        while repeat:
            repeat = False
            for address in self.addresses():
                try:
                    sent = self.flush_pending_sends(address)
                except ExceptionGroup as group:
                    errors.extend(group.exceptions)
                    sent = True
                repeat = repeat or sent
        if errors:
            raise ExceptionGroup("flushing all pending sends", errors)

    def addresses(self) -> list[Address]:
        """Return all registered addresses in sorted order."""
        with self._lock:
            return sorted(self._targets, key=_address_sort_key)


class MemoryClient(Transport):
    """A transport that queues datagrams in a :class:`Memory` instance."""

    def __init__(self, memory: Memory) -> None:
        self._memory = memory

    def send(self, address: Address, buffer: bytes) -> None:
        self._memory.add_pending_send(address, bytes(buffer))