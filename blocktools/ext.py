"""Probes for ext2, ext3, ext4, ext4dev and external journal devices."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .superblock import USAGE_FILESYSTEM, USAGE_OTHER, IdInfo, Magic, Probe

_SB_OFFSET = 0x400
_SB_READ = 0x200

_FLAGS_TEST_FILESYS = 0x0004
_COMPAT_HAS_JOURNAL = 0x0004

_RO_COMPAT_SPARSE_SUPER = 0x0001
_RO_COMPAT_LARGE_FILE = 0x0002
_RO_COMPAT_BTREE_DIR = 0x0004

_INCOMPAT_FILETYPE = 0x0002
_INCOMPAT_RECOVER = 0x0004
_INCOMPAT_JOURNAL_DEV = 0x0008
_INCOMPAT_META_BG = 0x0010

_MASK32 = 0xFFFFFFFF

_EXT2_RO_COMPAT_SUPP = _RO_COMPAT_SPARSE_SUPER | _RO_COMPAT_LARGE_FILE | _RO_COMPAT_BTREE_DIR
_EXT2_INCOMPAT_SUPP = _INCOMPAT_FILETYPE | _INCOMPAT_META_BG
_EXT2_INCOMPAT_UNSUPPORTED = ~_EXT2_INCOMPAT_SUPP & _MASK32
_EXT2_RO_COMPAT_UNSUPPORTED = ~_EXT2_RO_COMPAT_SUPP & _MASK32

_EXT3_RO_COMPAT_SUPP = _RO_COMPAT_SPARSE_SUPER | _RO_COMPAT_LARGE_FILE | _RO_COMPAT_BTREE_DIR
_EXT3_INCOMPAT_SUPP = _INCOMPAT_FILETYPE | _INCOMPAT_RECOVER | _INCOMPAT_META_BG
_EXT3_INCOMPAT_UNSUPPORTED = ~_EXT3_INCOMPAT_SUPP & _MASK32
_EXT3_RO_COMPAT_UNSUPPORTED = ~_EXT3_RO_COMPAT_SUPP & _MASK32


@dataclass(frozen=True)
class _ExtSuper:
    raw: bytes
    compat: int
    incompat: int
    ro_compat: int

    @classmethod
    def read(cls, probe: Probe) -> _ExtSuper | None:
        raw = probe.get_buffer(_SB_OFFSET, _SB_READ)
        if raw is None:
            return None
        compat, incompat, ro_compat = struct.unpack_from("<III", raw, 92)
        return cls(raw, compat, incompat, ro_compat)

    @property
    def flags(self) -> int:
        return struct.unpack_from("<I", self.raw, 352)[0]

    @property
    def uuid(self) -> bytes:
        return self.raw[104:120]

    @property
    def volume_name(self) -> bytes:
        return self.raw[120:136]

    @property
    def journal_uuid(self) -> bytes:
        return self.raw[208:224]

    @property
    def version(self) -> str:
        rev = struct.unpack_from("<I", self.raw, 76)[0]
        minor = struct.unpack_from("<H", self.raw, 62)[0]
        return f"{rev}.{minor}"


def _set_info(probe: Probe, es: _ExtSuper) -> None:
    if es.volume_name[0]:
        probe.set_label(es.volume_name)
    probe.set_uuid(es.uuid)
    if es.compat & _COMPAT_HAS_JOURNAL:
        probe.set_uuid_as(es.journal_uuid, "EXT_JOURNAL")
    probe.set_version(es.version)


def probe_jbd(probe: Probe, magic: Magic) -> bool:
    """Detect an external ext3/ext4 journal device."""
    es = _ExtSuper.read(probe)
    if es is None or not es.incompat & _INCOMPAT_JOURNAL_DEV:
        return False
    _set_info(probe, es)
    probe.set_uuid_as(es.uuid, "LOGUUID")
    return True


def probe_ext2(probe: Probe, magic: Magic) -> bool:
    """Detect ext2: no journal and only ext2 features."""
    es = _ExtSuper.read(probe)
    if es is None:
        return False
    if es.compat & _COMPAT_HAS_JOURNAL:
        return False
    if es.ro_compat & _EXT2_RO_COMPAT_UNSUPPORTED or es.incompat & _EXT2_INCOMPAT_UNSUPPORTED:
        return False
    _set_info(probe, es)
    return True


def probe_ext3(probe: Probe, magic: Magic) -> bool:
    """Detect ext3: a journal and only ext3 features."""
    es = _ExtSuper.read(probe)
    if es is None:
        return False
    if not es.compat & _COMPAT_HAS_JOURNAL:
        return False
    if es.ro_compat & _EXT3_RO_COMPAT_UNSUPPORTED or es.incompat & _EXT3_INCOMPAT_UNSUPPORTED:
        return False
    _set_info(probe, es)
    return True


def probe_ext4dev(probe: Probe, magic: Magic) -> bool:
    """Detect ext4dev: a filesystem flagged for development code."""
    es = _ExtSuper.read(probe)
    if es is None:
        return False
    if es.incompat & _INCOMPAT_JOURNAL_DEV:
        return False
    if not es.flags & _FLAGS_TEST_FILESYS:
        return False
    _set_info(probe, es)
    return True


def probe_ext4(probe: Probe, magic: Magic) -> bool:
    """Detect ext4: at least one feature that ext3 does not know."""
    es = _ExtSuper.read(probe)
    if es is None:
        return False
    if es.incompat & _INCOMPAT_JOURNAL_DEV:
        return False
    if not es.ro_compat & _EXT3_RO_COMPAT_UNSUPPORTED and not es.incompat & _EXT3_INCOMPAT_UNSUPPORTED:
        return False
    if es.flags & _FLAGS_TEST_FILESYS:
        return False
    _set_info(probe, es)
    return True


_EXT_MAGICS = (Magic(b"\x53\xef", sboff=0x38, kboff=_SB_OFFSET >> 10),)

JBD_IDINFO = IdInfo("jbd", USAGE_OTHER, probe_jbd, _EXT_MAGICS)
EXT2_IDINFO = IdInfo("ext2", USAGE_FILESYSTEM, probe_ext2, _EXT_MAGICS)
EXT3_IDINFO = IdInfo("ext3", USAGE_FILESYSTEM, probe_ext3, _EXT_MAGICS)
EXT4_IDINFO = IdInfo("ext4", USAGE_FILESYSTEM, probe_ext4, _EXT_MAGICS)
EXT4DEV_IDINFO = IdInfo("ext4dev", USAGE_FILESYSTEM, probe_ext4dev, _EXT_MAGICS)