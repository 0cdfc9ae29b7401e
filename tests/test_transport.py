import random

import pytest

from swimlist.transport import (
    Discard,
    FailingTransport,
    Memory,
    Store,
    Target,
    TransportError,
    Unreliable,
)

ADDR_A = ("10.0.0.1", 3000)
ADDR_B = ("10.0.0.2", 3000)


class RecordingTarget(Target):
    def __init__(self):
        self.received = []

    def dispatch_datagram(self, buffer):
        self.received.append(buffer)


class ForwardingTarget(Target):
    def __init__(self, client, forward_to):
        self.client = client
        self.forward_to = forward_to
        self.received = []

    def dispatch_datagram(self, buffer):
        self.received.append(buffer)
        self.client.send(self.forward_to, buffer + b"!")


class FailingTarget(Target):
    def dispatch_datagram(self, buffer):
        raise RuntimeError("boom")


def test_failing_transport_raises():
    with pytest.raises(TransportError, match="some transport error occurred"):
        FailingTransport().send(ADDR_A, b"data")


def test_store_records_and_clears():
    store = Store()
    store.send(ADDR_A, b"one")
    store.send(ADDR_B, b"two")
    assert store.addresses == [ADDR_A, ADDR_B]
    assert store.buffers == [b"one", b"two"]
    store.clear()
    assert store.addresses == []
    assert store.buffers == []


def test_unreliable_always_forwards_with_full_reliability():
    store = Store()
    unreliable = Unreliable(store, 1.0)
    for _ in range(100):
        unreliable.send(ADDR_A, b"x")
    assert len(store.buffers) == 100


def test_unreliable_never_forwards_with_zero_reliability():
    store = Store()
    unreliable = Unreliable(store, 0.0, rng=random.Random(1))
    for _ in range(100):
        unreliable.send(ADDR_A, b"x")
    assert store.buffers == []


def test_unreliable_forwards_some_with_partial_reliability():
    store = Store()
    unreliable = Unreliable(store, 0.5, rng=random.Random(42))
    for _ in range(1000):
        unreliable.send(ADDR_A, b"x")
    assert 0 < len(store.buffers) < 1000


def test_unreliable_propagates_errors():
    unreliable = Unreliable(FailingTransport(), 1.0)
    with pytest.raises(TransportError):
        unreliable.send(ADDR_A, b"x")


def test_unreliable_over_discard_drops_silently():
    unreliable = Unreliable(Discard(), 1.0)
    assert unreliable.send(ADDR_A, b"x") is None


def test_memory_delivers_on_flush():
    memory = Memory()
    target = RecordingTarget()
    memory.add_target(ADDR_A, target)
    client = memory.client()
    client.send(ADDR_A, b"first")
    client.send(ADDR_A, b"second")
    assert target.received == []
    assert memory.flush_pending_sends(ADDR_A) is True
    assert target.received == [b"first", b"second"]
    assert memory.flush_pending_sends(ADDR_A) is False


def test_memory_client_copies_buffer():
    memory = Memory()
    target = RecordingTarget()
    memory.add_target(ADDR_A, target)
    buffer = bytearray(b"abc")
    memory.client().send(ADDR_A, buffer)
    buffer[0] = ord("z")
    memory.flush_pending_sends(ADDR_A)
    assert target.received == [b"abc"]


def test_memory_drops_sends_to_unknown_target():
    memory = Memory()
    memory.client().send(ADDR_B, b"lost")
    assert memory.flush_pending_sends(ADDR_B) is False
    target = RecordingTarget()
    memory.add_target(ADDR_B, target)
    assert memory.flush_pending_sends(ADDR_B) is False
    assert target.received == []


def test_memory_addresses_are_sorted_by_ip():
    memory = Memory()
    for address in [("10.0.0.2", 1), ("9.0.0.1", 1), ("10.0.0.1", 2), ("10.0.0.1", 1)]:
        memory.add_target(address, RecordingTarget())
    assert memory.addresses() == [
        ("9.0.0.1", 1),
        ("10.0.0.1", 1),
        ("10.0.0.1", 2),
        ("10.0.0.2", 1),
    ]


def test_memory_flush_all_handles_cascading_sends():
    memory = Memory()
    client = memory.client()
    first = ForwardingTarget(client, ADDR_B)
    second = RecordingTarget()
    memory.add_target(ADDR_A, first)
    memory.add_target(ADDR_B, second)
    client.send(ADDR_A, b"hello")
    memory.flush_all_pending_sends()
    assert first.received == [b"hello"]
    assert second.received == [b"hello!"]


def test_memory_flush_collects_target_errors():
    memory = Memory()
    memory.add_target(ADDR_A, FailingTarget())
    client = memory.client()
    client.send(ADDR_A, b"one")
    client.send(ADDR_A, b"two")
    with pytest.raises(ExceptionGroup) as info:
        memory.flush_pending_sends(ADDR_A)
    assert len(info.value.exceptions) == 2
    assert all(isinstance(exc, RuntimeError) for exc in info.value.exceptions)


def test_memory_flush_all_collects_errors_and_continues():
    memory = Memory()
    good = RecordingTarget()
    memory.add_target(ADDR_A, FailingTarget())
    memory.add_target(ADDR_B, good)
    client = memory.client()
    client.send(ADDR_A, b"bad")
    client.send(ADDR_B, b"good")
    with pytest.raises(ExceptionGroup) as info:
        memory.flush_all_pending_sends()
    assert len(info.value.exceptions) == 1
    assert good.received == [b"good"]