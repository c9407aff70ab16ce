"""Probe for the exFAT filesystem."""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .encode import Encoding
from .superblock import USAGE_FILESYSTEM, IdInfo, Magic, Probe

_SB_SIZE = 512
_FIRST_DATA_CLUSTER = 2
_LAST_DATA_CLUSTER = 0xFFFFFF6
_ENTRY_SIZE = 32
_ENTRY_EOD = 0x00
_ENTRY_LABEL = 0x83
_LABEL_NAME_SIZE = 22
_MAX_ITER = 10000

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class _ExfatSuper:
    jump_boot: bytes
    must_be_zero: bytes
    fat_offset: int
    cluster_heap_offset: int
    root_cluster: int
    serial: bytes
    vermin: int
    vermaj: int
    sector_shift: int
    cluster_shift: int
    boot_signature: int

    @classmethod
    def parse(cls, raw: bytes) -> _ExfatSuper:
        fat_offset, _fat_len, heap, _count, root = struct.unpack_from("<IIIII", raw, 80)
        return cls(
            jump_boot=raw[0:3],
            must_be_zero=raw[11:64],
            fat_offset=fat_offset,
            cluster_heap_offset=heap,
            root_cluster=root,
            serial=raw[100:104],
            vermin=raw[104],
            vermaj=raw[105],
            sector_shift=raw[108],
            cluster_shift=raw[109],
            boot_signature=struct.unpack_from("<H", raw, 510)[0],
        )

    @property
    def block_size(self) -> int:
        return (1 << self.sector_shift) & _MASK32 if self.sector_shift < 32 else 0

    @property
    def cluster_size(self) -> int:
        if self.cluster_shift >= 32:
            return 0
        return (self.block_size << self.cluster_shift) & _MASK32

    def block_to_offset(self, block: int) -> int:
        return (block << self.sector_shift) & _MASK64

    def cluster_to_offset(self, cluster: int) -> int:
        index = (cluster - _FIRST_DATA_CLUSTER) & _MASK32
        block = (self.cluster_heap_offset + (index << self.cluster_shift)) & _MASK64
        return self.block_to_offset(block)


def _next_cluster(probe: Probe, sb: _ExfatSuper, cluster: int) -> int:
    offset = (sb.block_to_offset(sb.fat_offset) + cluster * 4) & _MASK64
    raw = probe.get_buffer(offset, 4)
    if raw is None:
        return 0
    return struct.unpack("<I", raw)[0]


def _find_label(probe: Probe, sb: _ExfatSuper) -> bytes | None:
    cluster = sb.root_cluster
    offset = sb.cluster_to_offset(cluster)
    cluster_size = sb.cluster_size
    for _ in range(_MAX_ITER):
        entry = probe.get_buffer(offset, _ENTRY_SIZE)
        if entry is None or entry[0] == _ENTRY_EOD:
            return None
        if entry[0] == _ENTRY_LABEL:
            return entry
        offset += _ENTRY_SIZE
        if cluster_size and offset % cluster_size == 0:
            cluster = _next_cluster(probe, sb, cluster)
            if not _FIRST_DATA_CLUSTER <= cluster <= _LAST_DATA_CLUSTER:
                return None
            offset = sb.cluster_to_offset(cluster)
    return None


def probe_exfat(probe: Probe, magic: Magic) -> bool:
    """Validate an exFAT boot sector and read its label, serial and revision."""
    raw = probe.get_superblock(magic, _SB_SIZE)
    if raw is None:
        return False
    sb = _ExfatSuper.parse(raw)
    if not sb.cluster_size:
        return False
    if sb.boot_signature != 0xAA55:
        return False
    if sb.jump_boot != b"\xEB\x76\x90":
        return False
    if any(sb.must_be_zero):
        return False

    label = _find_label(probe, sb)
    if label is not None:
        length = min(label[1] * 2, _LABEL_NAME_SIZE)
        probe.set_utf8_label(label[2:2 + length], Encoding.UTF16LE)

    serial = sb.serial
    probe.uuid = f"{serial[3]:02X}{serial[2]:02X}-{serial[1]:02X}{serial[0]:02X}"
    probe.set_version(f"{sb.vermaj}.{sb.vermin}")
    return True


EXFAT_IDINFO = IdInfo(
    name="exfat",
    usage=USAGE_FILESYSTEM,
    probefunc=probe_exfat,
    magics=(Magic(b"EXFAT   ", sboff=3),),
)