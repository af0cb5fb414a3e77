"""On-wire envelope format.

Layout (all integers big-endian):

    u32 wrapped_key_length | wrapped_key | iv (12 bytes) | auth_tag (16 bytes) | ciphertext
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from helixconnect.core.errors import FormatError

IV_SIZE = 12  # 96 bits (recommended for AES-GCM)
TAG_SIZE = 16  # 128 bits
KEY_SIZE = 32  # 256 bits

_LENGTH = struct.Struct(">I")
HEADER_SIZE = _LENGTH.size


@dataclass(frozen=True)
class Envelope:
    """A sealed object: wrapped data key, IV, tag and AEAD ciphertext."""

    wrapped_key: bytes
    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def __post_init__(self) -> None:
        if len(self.iv) != IV_SIZE:
            raise FormatError(f"IV must be {IV_SIZE} bytes, got {len(self.iv)}")
        if len(self.auth_tag) != TAG_SIZE:
            raise FormatError(f"Auth tag must be {TAG_SIZE} bytes, got {len(self.auth_tag)}")

    @property
    def wrapped_key_length(self) -> int:
        return len(self.wrapped_key)

    def to_bytes(self) -> bytes:
        """Serialize to the concatenated wire format."""
        return b"".join((
            _LENGTH.pack(len(self.wrapped_key)),
            self.wrapped_key,
            self.iv,
            self.auth_tag,
            self.ciphertext,
        ))

    @classmethod
    def from_bytes(cls, data: bytes) -> Envelope:
        """Parse the wire format.

        Raises:
            FormatError: If the buffer is truncated or the length prefix is inconsistent.
        """
        view = memoryview(data)
        if len(view) < HEADER_SIZE + IV_SIZE + TAG_SIZE:
            raise FormatError(f"Envelope too short: {len(view)} bytes")

        (key_len,) = _LENGTH.unpack_from(view)
        if key_len == 0:
            raise FormatError("Envelope has an empty wrapped key")

        iv_start = HEADER_SIZE + key_len
        tag_start = iv_start + IV_SIZE
        body_start = tag_start + TAG_SIZE
        if body_start > len(view):
            raise FormatError(
                f"Wrapped key length {key_len} exceeds envelope size {len(view)}"
            )

        return cls(
            wrapped_key=bytes(view[HEADER_SIZE:iv_start]),
            iv=bytes(view[iv_start:tag_start]),
            auth_tag=bytes(view[tag_start:body_start]),
            ciphertext=bytes(view[body_start:]),
        )
