"""
Random-access decoding of big-endian records from an in-memory byte buffer.
"""

from __future__ import annotations

import struct

from .errors import OutOfRangeError

_U32_BE = struct.Struct(">I")


class BinaryRecordReader:
    """Read-only view over a fixed byte buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    def __len__(self) -> int:
        return len(self._data)

    def _check(self, offset: int, length: int) -> None:
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise OutOfRangeError(
                f"Cannot read {length} byte(s) at offset {offset} "
                f"from a buffer of {len(self._data)} byte(s)."
            )

    def read_u32_be(self, offset: int) -> int:
        """Decode the 4 bytes at `offset` as a big-endian unsigned integer."""
        self._check(offset, _U32_BE.size)
        (value,) = _U32_BE.unpack_from(self._data, offset)
        return value

    def read_bytes(self, offset: int, length: int) -> bytes:
        self._check(offset, length)
        return self._data[offset : offset + length]

    def read_byte(self, offset: int) -> int:
        self._check(offset, 1)
        return self._data[offset]
