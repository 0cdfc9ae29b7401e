import socket
from unittest import mock

import pytest

from swimlist.addressing import resolve_advertise_address, resolve_bootstrap_members


class FakeSocket:
    connected_to = []

    def __init__(self, *args, **kwargs):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def connect(self, address):
        FakeSocket.connected_to.append(address)

    def getsockname(self):
        return ("192.0.2.10", 54321)

    def close(self):
        pass


def test_advertise_address_is_resolved_directly():
    assert resolve_advertise_address("127.0.0.1:4000", ":3000") == ("127.0.0.1", 4000)


def test_advertise_address_ipv6_literal():
    assert resolve_advertise_address("[::1]:4000", ":3000") == ("::1", 4000)


def test_advertise_address_localhost_prefers_ipv4():
    host, port = resolve_advertise_address("localhost:3001", "")
    assert host == "127.0.0.1"
    assert port == 3001


def test_advertise_address_without_port_raises():
    with pytest.raises(ValueError, match="resolving advertise address"):
        resolve_advertise_address("127.0.0.1", ":3000")


def test_bind_address_uses_local_interface_ip():
    FakeSocket.connected_to = []
    with mock.patch.object(socket, "socket", FakeSocket):
        result = resolve_advertise_address("", ":3000")
    assert result == ("192.0.2.10", 3000)
    assert FakeSocket.connected_to == [("8.8.8.8", 80)]


def test_bind_address_without_port_raises():
    with pytest.raises(ValueError):
        resolve_advertise_address("", "localhost")


def test_bind_address_with_non_numeric_port_raises():
    with pytest.raises(ValueError):
        resolve_advertise_address("", "localhost:abc")


def test_bootstrap_members_are_resolved_in_order():
    result = resolve_bootstrap_members(["127.0.0.1:3000", "127.0.0.1:3001"])
    assert result == [("127.0.0.1", 3000), ("127.0.0.1", 3001)]


def test_bootstrap_members_empty():
    assert resolve_bootstrap_members([]) == []


def test_bootstrap_members_collects_all_errors():
    with pytest.raises(ExceptionGroup) as info:
        resolve_bootstrap_members(["127.0.0.1:3000", "no-port", "also-no-port"])
    assert len(info.value.exceptions) == 2
    assert all(isinstance(exc, ValueError) for exc in info.value.exceptions)
    assert "no-port" in str(info.value.exceptions[0])