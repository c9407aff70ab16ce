"""Conversion of on-disk label strings to UTF-8."""

from __future__ import annotations

import enum
from collections.abc import Iterator


class Encoding(enum.IntEnum):
    """Character encodings found in filesystem labels."""

    UTF16BE = 0
    UTF16LE = 1
    LATIN1 = 2


def _code_units(encoding: Encoding, data: bytes) -> Iterator[int]:
    if encoding is Encoding.LATIN1:
        yield from data
        return
    order = "little" if encoding is Encoding.UTF16LE else "big"
    # A trailing odd byte cannot form a code unit and is dropped.
    for start in range(0, len(data) - 1, 2):
        yield int.from_bytes(data[start:start + 2], order)


def _utf8_unit(unit: int) -> bytes:
    if unit < 0x80:
        return bytes((unit,))
    if unit < 0x800:
        return bytes((0xC0 | (unit >> 6), 0x80 | (unit & 0x3F)))
    return bytes((
        0xE0 | (unit >> 12),
        0x80 | ((unit >> 6) & 0x3F),
        0x80 | (unit & 0x3F),
    ))


def encode_to_utf8(encoding: Encoding | int, data: bytes, size: int) -> bytes:
    """Convert ``data`` to UTF-8 bytes fitting a buffer of ``size`` bytes.

    Conversion stops at the first NUL code unit, and before any character
    whose bytes plus a terminating NUL would not fit into ``size`` bytes.
    Each 16-bit unit is encoded on its own, as the on-disk format does.
    Raises ValueError for an unknown encoding.
    """
    encoding = Encoding(encoding)
    out = bytearray()
    for unit in _code_units(encoding, bytes(data)):
        if unit == 0:
            break
        chunk = _utf8_unit(unit)
        if len(out) + len(chunk) >= size:
            break
        out += chunk
    return bytes(out)