"""Identification of the filesystem on a device or image."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass

from .exfat import EXFAT_IDINFO
from .ext import EXT2_IDINFO, EXT3_IDINFO, EXT4_IDINFO, EXT4DEV_IDINFO, JBD_IDINFO
from .f2fs import F2FS_IDINFO
from .superblock import BTRFS_IDINFO, IdInfo, Probe

# Order matters: ext4dev and ext4 must be tried before ext3 and ext2.
IDINFOS: tuple[IdInfo, ...] = (
    EXT4DEV_IDINFO,
    EXT4_IDINFO,
    EXT3_IDINFO,
    EXT2_IDINFO,
    JBD_IDINFO,
    EXFAT_IDINFO,
    BTRFS_IDINFO,
    F2FS_IDINFO,
)

# How much of a device is read for probing; every superblock lies within it.
READ_LIMIT = 4 * 1024 * 1024


@dataclass
class ProbeInfo:
    """What probing found on one device."""

    type: str
    dev: str
    uuid: str | None = None
    label: str | None = None
    version: str | None = None


def _magic_matches(data: bytes, idinfo: IdInfo) -> bool:
    for magic in idinfo.magics:
        offset = (magic.kboff << 10) + magic.sboff
        if data[offset:offset + len(magic.magic)] == magic.magic:
            return True
    return False


def _probe(data: bytes, dev: str, size: int, idinfos: Sequence[IdInfo] = IDINFOS) -> ProbeInfo | None:
    data = bytes(data)
    for idinfo in idinfos:
        if idinfo.minsz and size < idinfo.minsz:
            continue
        if not _magic_matches(data, idinfo):
            continue
        probe = Probe(data)
        if not idinfo.probefunc(probe, next(
            m for m in idinfo.magics
            if data[(m.kboff << 10) + m.sboff:(m.kboff << 10) + m.sboff + len(m.magic)] == m.magic
        )):
            continue
        return ProbeInfo(
            type=idinfo.name,
            dev=dev,
            uuid=probe.uuid,
            label=probe.label,
            version=probe.version,
        )
    return None


def probe_bytes(data: bytes, dev: str) -> ProbeInfo | None:
    """Identify the filesystem in ``data``; None if nothing is recognised."""
    return _probe(data, dev, len(data))


def probe_file(path: str) -> ProbeInfo | None:
    """Identify the filesystem on the device or image at ``path``.

    Only the first READ_LIMIT bytes are examined. Returns None when the
    file cannot be read or holds no known filesystem.
    """
    try:
        with open(path, "rb") as fh:
            data = fh.read(READ_LIMIT)
            size = fh.seek(0, os.SEEK_END)
    except OSError:
        return None
    return _probe(data, path, size)