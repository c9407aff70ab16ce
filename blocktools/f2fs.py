"""Probe for the F2FS filesystem."""

from __future__ import annotations

import struct

from .encode import Encoding
from .superblock import USAGE_FILESYSTEM, IdInfo, Magic, Probe

F2FS_MAGIC = b"\x10\x20\xF5\xF2"

_UUID_OFFSET = 0x6C
_UUID_SIZE = 16
_LABEL_OFFSET = 0x7C
_LABEL_SIZE = 512 * 2
_SB_SIZE = _LABEL_OFFSET + _LABEL_SIZE


def probe_f2fs(probe: Probe, magic: Magic) -> bool:
    """Read label, UUID and version from an F2FS superblock."""
    sb = probe.get_superblock(magic, _SB_SIZE)
    if sb is None:
        return False

    major, minor = struct.unpack_from("<HH", sb, 4)

    # Version 1.0 superblocks have an unknown layout beyond the magic.
    if major == 1 and minor == 0:
        return True

    label = sb[_LABEL_OFFSET:_LABEL_OFFSET + _LABEL_SIZE]
    if label[0]:
        probe.set_utf8_label(label, Encoding.UTF16LE)

    probe.set_uuid(sb[_UUID_OFFSET:_UUID_OFFSET + _UUID_SIZE])
    probe.set_version(f"{major}.{minor}")
    return True


F2FS_IDINFO = IdInfo(
    name="f2fs",
    usage=USAGE_FILESYSTEM,
    probefunc=probe_f2fs,
    magics=(Magic(F2FS_MAGIC, sboff=0, kboff=0x400 >> 10),),
)