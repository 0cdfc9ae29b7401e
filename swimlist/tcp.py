"""Encrypted, reliable datagram transport over TCP."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterable

from swimlist.aead import OVERHEAD, DecryptionError, open_with_any, seal
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
_LENGTH_SIZE = 4
_MAX_DATAGRAM_LENGTH = 0xFFFFFFFF
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


def _resolve_listen(host: str, port: int) -> tuple[int, tuple]:
    infos = socket.getaddrinfo(
        host or None, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )
    infos.sort(key=lambda info: info[0] != socket.AF_INET)
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


class TCPClient(Transport):
    """Sends encrypted datagrams over TCP, one connection per datagram.

    The stream carries the sealed 4-byte payload length followed by the sealed
    payload. Not safe for concurrent use; callers serialize access.
    """

    def __init__(self, key: bytes) -> None:
        self._key = _check_key(key)
        self._dial_timeout = 1.0
        self._write_timeout = 10.0

    def send(self, address: Address, buffer: bytes) -> None:
        """Encrypt ``buffer`` and transmit it to the member at ``address``."""
        plaintext = bytes(buffer)
        if len(plaintext) > _MAX_DATAGRAM_LENGTH:
            raise TransportError(
                "TCP client transport send: buffer length exceeds maximum datagram length"
            )
        header = len(plaintext).to_bytes(_LENGTH_SIZE, "big")
        ciphertext = seal(self._key, header) + seal(self._key, plaintext)
        ENCRYPTIONS.labels("tcp_client").inc(2)

        try:
            connection = socket.create_connection(address, timeout=self._dial_timeout)
        except OSError as exc:
            raise TransportError(
                f"TCP client transport send: connecting to remote host at {address!r}: {exc}"
            ) from exc
        with connection:
            try:
                connection.settimeout(self._write_timeout)
                connection.sendall(ciphertext)
            except OSError as exc:
                TRANSMIT_ERRORS.labels("tcp_client").inc()
                raise TransportError(
                    f"TCP client transport send: sending the datagram payload: {exc}"
                ) from exc
        TRANSMIT_BYTES.labels("tcp_client").inc(len(ciphertext))


class TCPServer:
    """Accepts encrypted datagrams over TCP and hands them to a target.

    Every key is tried in order to decrypt a received message.
    """

    def __init__(
        self,
        logger: logging.Logger | None,
        target: Target,
        bind_address: str,
        keys: Iterable[bytes],
    ) -> None:
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._target = target
        self._bind_address = bind_address
        self._keys = tuple(_check_key(key) for key in keys)
        self._read_timeout = 10.0
        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._handlers: list[threading.Thread] = []
        self._handlers_lock = threading.Lock()
        self._dispatch_lock = threading.Lock()
        self._stop = threading.Event()

    def startup(self) -> None:
        """Start listening and accepting connections in a background thread."""
        if self._listener is not None:
            raise RuntimeError("TCP server has already been started")
        self._logger.info("TCP server transport startup")
        host, port = _split_host_port(self._bind_address)
        family, sockaddr = _resolve_listen(host, port)
        listener = socket.socket(family, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(sockaddr)
            listener.listen()
        except OSError:
            listener.close()
            raise
        listener.settimeout(_POLL_INTERVAL)
        self._listener = listener
        self._accept_thread = threading.Thread(
            target=self._serve, name="swim-tcp-server", daemon=True
        )
        self._accept_thread.start()

    def shutdown(self) -> None:
        """Stop accepting connections and wait for open connections to finish."""
        if self._listener is None or self._accept_thread is None:
            raise RuntimeError("TCP server has not been started")
        self._logger.info("TCP server transport shutdown")
        self._stop.set()
        self._accept_thread.join()
        self._listener.close()
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler.join()

    def addr(self) -> Address:
        """Return the address the server is listening on."""
        if self._listener is None:
            raise RuntimeError("TCP server has not been started")
        host, port = self._listener.getsockname()[:2]
        return host, port

    def __enter__(self) -> TCPServer:
        self.startup()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _serve(self) -> None:
        assert self._listener is not None
        self._logger.info("TCP server transport background task started")
        try:
            while not self._stop.is_set():
                try:
                    connection, _ = self._listener.accept()
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._stop.is_set():
                        self._logger.error("Accepting TCP connection: %s", exc)
                    return
                handler = threading.Thread(
                    target=self._handle_connection, args=(connection,), daemon=True
                )
                with self._handlers_lock:
                    self._handlers = [t for t in self._handlers if t.is_alive()]
                    self._handlers.append(handler)
                handler.start()
        finally:
            self._logger.info("TCP server transport background task finished")

    def _handle_connection(self, connection: socket.socket) -> None:
        with connection:
            try:
                self._receive(connection)
            except Exception as exc:
                self._logger.error("Handling TCP connection: %s", exc)

    def _receive(self, connection: socket.socket) -> None:
        connection.settimeout(self._read_timeout)
        header = self._read_exactly(connection, _LENGTH_SIZE + OVERHEAD)
        datagram_length = self._decrypt_length(header)
        connection.settimeout(self._read_timeout)
        payload = self._read_exactly(connection, datagram_length + OVERHEAD)
        try:
            self._decrypt_and_dispatch(payload)
        except Exception as exc:
            self._logger.error("Dispatching TCP message: %s", exc)

    @staticmethod
    def _read_exactly(connection: socket.socket, length: int) -> bytes:
        received = bytearray()
        try:
            while len(received) < length:
                chunk = connection.recv(length - len(received))
                if not chunk:
                    raise TransportError(
                        f"unexpected end of stream after {len(received)} of {length} bytes"
                    )
                received.extend(chunk)
        except (OSError, TransportError):
            RECEIVE_BYTES.labels("tcp_server").inc(len(received))
            RECEIVE_ERRORS.labels("tcp_server").inc()
            raise
        RECEIVE_BYTES.labels("tcp_server").inc(len(received))
        return bytes(received)

    def _decrypt(self, data: bytes) -> bytes:
        for key in self._keys:
            DECRYPTIONS.labels("tcp_server").inc()
            try:
                return open_with_any((key,), data)
            except DecryptionError:
                continue
        raise DecryptionError("no encryption key could decrypt the network message")

    def _decrypt_length(self, data: bytes) -> int:
        with self._dispatch_lock:
            plaintext = self._decrypt(data)
        if len(plaintext) != _LENGTH_SIZE:
            raise TransportError("malformed datagram length")
        return int.from_bytes(plaintext, "big")

    def _decrypt_and_dispatch(self, data: bytes) -> None:
        with self._dispatch_lock:
            plaintext = self._decrypt(data)
            self._target.dispatch_datagram(plaintext)