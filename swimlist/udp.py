"""Encrypted, unreliable datagram transport over UDP."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterable

from swimlist.aead import DecryptionError, open_with_any, seal
from swimlist.metrics import (
    DECRYPTIONS,
    ENCRYPTIONS,
    RECEIVE_BYTES,
    RECEIVE_ERRORS,
    TRANSMIT_BYTES,
    TRANSMIT_ERRORS,
)
from swimlist.transport import Address, Target, Transport, TransportError

_VALID_KEY_SIZES = (16, 24, 32)
_POLL_INTERVAL = 0.1


def _check_key(key: bytes) -> bytes:
    key = bytes(key)
    if len(key) not in _VALID_KEY_SIZES:
        raise ValueError(f"invalid AES key length {len(key)}")
    return key


def _split_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    return host, int(port)


def _resolve(host: str | None, port: int, passive: bool) -> tuple[int, tuple]:
    infos = socket.getaddrinfo(
        host or None,
        port,
        type=socket.SOCK_DGRAM,
        flags=socket.AI_PASSIVE if passive else 0,
    )
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


class UDPClient(Transport):
    """Sends encrypted datagrams over UDP.

    Not safe for concurrent use; callers serialize access.
    """

    def __init__(self, max_datagram_length: int, key: bytes) -> None:
        self._max_datagram_length = max_datagram_length
        self._key = _check_key(key)

    def send(self, address: Address, buffer: bytes) -> None:
        """Encrypt and send ``buffer``; raise if it would exceed the maximum datagram length."""
        ciphertext = seal(self._key, buffer)
        ENCRYPTIONS.labels("udp_client").inc()
        if len(ciphertext) > self._max_datagram_length:
            raise TransportError(
                "UDP client transport send: buffer length exceeds maximum datagram length"
            )
        host, port = address
        try:
            family, sockaddr = _resolve(host, port, passive=False)
        except OSError as exc:
            raise TransportError(
                f"UDP client transport send: connecting to remote host at {address!r}: {exc}"
            ) from exc
        with socket.socket(family, socket.SOCK_DGRAM) as sock:
            try:
                sock.connect(sockaddr)
                sent = sock.send(ciphertext)
            except OSError as exc:
                TRANSMIT_ERRORS.labels("udp_client").inc()
                raise TransportError(
                    f"UDP client transport send: sending the datagram payload: {exc}"
                ) from exc
        TRANSMIT_BYTES.labels("udp_client").inc(sent)


class UDPServer:
    """Receives encrypted datagrams over UDP and hands them to a target.

    Every key is tried in order to decrypt a received datagram.
    """

    def __init__(
        self,
        logger: logging.Logger | None,
        target: Target,
        bind_address: str,
        receive_buffer_length: int,
        keys: Iterable[bytes],
    ) -> None:
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._target = target
        self._bind_address = bind_address
        self._receive_buffer_length = receive_buffer_length
        self._keys = tuple(_check_key(key) for key in keys)
        self._socket: socket.socket | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def startup(self) -> None:
        """Bind the socket and start receiving in a background thread."""
        if self._socket is not None:
            raise RuntimeError("UDP server has already been started")
        self._logger.info("UDP server transport startup")
        try:
            host, port = _split_host_port(self._bind_address)
            family, sockaddr = _resolve(host, port, passive=True)
        except (OSError, ValueError) as exc:
            raise TransportError(f"resolving host: {exc}") from exc
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(sockaddr)
        except OSError as exc:
            sock.close()
            raise TransportError(f"listening for UDP: {exc}") from exc
        sock.settimeout(_POLL_INTERVAL)
        self._socket = sock
        self._thread = threading.Thread(target=self._serve, name="swim-udp-server", daemon=True)
        self._thread.start()

    def shutdown(self) -> None:
        """Stop receiving and close the socket."""
        if self._socket is None or self._thread is None:
            raise RuntimeError("UDP server has not been started")
        self._logger.info("UDP server transport shutdown")
        self._stop.set()
        self._thread.join()
        self._socket.close()

    def addr(self) -> Address:
        """Return the address the server is listening on."""
        if self._socket is None:
            raise RuntimeError("UDP server has not been started")
        host, port = self._socket.getsockname()[:2]
        return host, port

    def __enter__(self) -> UDPServer:
        self.startup()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _serve(self) -> None:
        assert self._socket is not None
        self._logger.info("UDP server transport background task started")
        try:
            while not self._stop.is_set():
                try:
                    data = self._socket.recv(self._receive_buffer_length)
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._stop.is_set():
                        RECEIVE_ERRORS.labels("udp_server").inc()
                        self._logger.error("Reading UDP message: %s", exc)
                    return
                RECEIVE_BYTES.labels("udp_server").inc(len(data))
                if not data:
                    continue
                try:
                    self._decrypt_and_dispatch(data)
                except Exception as exc:
                    self._logger.error("Dispatching UDP message: %s", exc)
        finally:
            self._logger.info("UDP server transport background task finished")

    def _decrypt_and_dispatch(self, data: bytes) -> None:
        for key in self._keys:
            DECRYPTIONS.labels("udp_server").inc()
            try:
                plaintext = open_with_any((key,), data)
            except DecryptionError:
                continue
            self._target.dispatch_datagram(plaintext)
            return
        raise DecryptionError("no encryption key could decrypt the network message")