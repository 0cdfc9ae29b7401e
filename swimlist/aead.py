"""Authenticated encryption of datagrams with AES-GCM and a random nonce."""

from __future__ import annotations

import os
from collections.abc import Iterable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
TAG_SIZE = 16
OVERHEAD = NONCE_SIZE + TAG_SIZE
"""Number of bytes a sealed message is longer than its plaintext."""


class DecryptionError(Exception):
    """Raised when no key could decrypt a message."""


def seal(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt ``plaintext`` with ``key``; the random nonce is prepended to the result."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(bytes(key)).encrypt(nonce, bytes(plaintext), None)


def open_with_any(keys: Iterable[bytes], ciphertext: bytes) -> bytes:
    """Decrypt ``ciphertext`` with the first of ``keys`` that authenticates it."""
    data = bytes(ciphertext)
    nonce, body = data[:NONCE_SIZE], data[NONCE_SIZE:]
    for key in keys:
        cipher = AESGCM(bytes(key))
        if len(data) < OVERHEAD:
            continue
        try:
            return cipher.decrypt(nonce, body, None)
        except InvalidTag:
            continue
    raise DecryptionError("no encryption key could decrypt the network message")