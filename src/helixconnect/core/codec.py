"""Envelope codec: compress-then-encrypt with per-object data keys.

This module provides:
- KeyWrapper: Protocol for the key-wrap collaborator
- EnvelopeCodec: seal()/open() over AES-256-GCM and DEFLATE
"""

from __future__ import annotations

import logging
import os
import zlib
from typing import TYPE_CHECKING, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from helixconnect.core.envelope import IV_SIZE, KEY_SIZE, TAG_SIZE, Envelope
from helixconnect.core.errors import CryptoError, FormatError, IntegrityError, ValidationError

if TYPE_CHECKING:
    import threading

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION_LEVEL = 6
MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 9


class KeyWrapper(Protocol):
    """Wraps and unwraps data keys through a key-management service."""

    def wrap(
        self, data_key: bytes | bytearray, cancel: threading.Event | None = None
    ) -> bytes: ...

    def unwrap(self, wrapped_key: bytes, cancel: threading.Event | None = None) -> bytearray: ...


def _random_bytes(size: int) -> bytearray:
    try:
        return bytearray(os.urandom(size))
    except (OSError, NotImplementedError) as e:
        raise CryptoError(f"Random generation failed: {e}") from e


def _zero(buf: bytearray) -> None:
    buf[:] = bytes(len(buf))


def check_compression_level(level: int) -> int:
    if not MIN_COMPRESSION_LEVEL <= level <= MAX_COMPRESSION_LEVEL:
        raise ValidationError(
            f"Compression level must be {MIN_COMPRESSION_LEVEL}-{MAX_COMPRESSION_LEVEL}, got {level}",
            option="compression_level",
        )
    return level


class EnvelopeCodec:
    """Seals and opens envelopes.

    The codec holds no key material between calls: every seal generates a
    fresh 256-bit data key and 96-bit IV, and every open performs its own
    unwrap. Keys live in bytearrays that are zeroed once the cipher is done
    with them.

    Usage:
        codec = EnvelopeCodec(key_wrap_client)
        envelope = codec.seal(b"payload")
        assert codec.open(envelope) == b"payload"
    """

    def __init__(
        self,
        key_wrapper: KeyWrapper,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    ) -> None:
        """Initialize the codec.

        Args:
            key_wrapper: Key-wrap collaborator (see KeyWrapClient).
            compression_level: Default DEFLATE level (1-9).
        """
        self._key_wrapper = key_wrapper
        self._compression_level = check_compression_level(compression_level)

    @property
    def compression_level(self) -> int:
        return self._compression_level

    def seal(
        self,
        plaintext: bytes,
        compression_level: int | None = None,
        cancel: threading.Event | None = None,
    ) -> Envelope:
        """Compress, encrypt and wrap the key for one object.

        Args:
            plaintext: Raw payload.
            compression_level: Overrides the codec default for this call.
            cancel: Cancellation signal for the key-wrap call.

        Returns:
            The sealed Envelope.

        Raises:
            CryptoError: If random generation fails.
            KeyServiceError: If wrapping fails (propagated unchanged).
        """
        level = check_compression_level(
            self._compression_level if compression_level is None else compression_level
        )
        compressed = zlib.compress(plaintext, level)

        data_key = _random_bytes(KEY_SIZE)
        try:
            iv = bytes(_random_bytes(IV_SIZE))
            sealed = AESGCM(data_key).encrypt(iv, compressed, None)
            wrapped_key = self._key_wrapper.wrap(data_key, cancel=cancel)
        finally:
            _zero(data_key)

        return Envelope(
            wrapped_key=wrapped_key,
            iv=iv,
            auth_tag=sealed[-TAG_SIZE:],
            ciphertext=sealed[:-TAG_SIZE],
        )

    def open(self, envelope: Envelope | bytes, cancel: threading.Event | None = None) -> bytes:
        """Unwrap the key, verify and decrypt, then decompress.

        Args:
            envelope: Envelope instance or its wire bytes.
            cancel: Cancellation signal for the key-unwrap call.

        Returns:
            The original plaintext.

        Raises:
            IntegrityError: If the authentication tag does not verify.
            FormatError: If the envelope is malformed or the verified
                payload does not decompress.
            KeyServiceError: If unwrapping fails (propagated unchanged).
        """
        if not isinstance(envelope, Envelope):
            envelope = Envelope.from_bytes(envelope)

        data_key = self._key_wrapper.unwrap(envelope.wrapped_key, cancel=cancel)
        try:
            if len(data_key) != KEY_SIZE:
                raise FormatError(f"Unwrapped key has {len(data_key)} bytes, expected {KEY_SIZE}")
            compressed = AESGCM(data_key).decrypt(
                envelope.iv, envelope.ciphertext + envelope.auth_tag, None
            )
        except InvalidTag as e:
            raise IntegrityError("Envelope authentication failed") from e
        finally:
            if isinstance(data_key, bytearray):
                _zero(data_key)

        try:
            return zlib.decompress(compressed)
        except zlib.error as e:
            raise FormatError(f"Authenticated payload failed to decompress: {e}") from e
