"""Probing state, magic descriptions and the btrfs superblock probe."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

from .encode import Encoding, encode_to_utf8

LABEL_SIZE = 128

USAGE_FILESYSTEM = "filesystem"
USAGE_OTHER = "other"


@dataclass(frozen=True)
class Magic:
    """A magic string at ``kboff`` KiB plus ``sboff`` bytes into a device."""

    magic: bytes
    sboff: int = 0
    kboff: int = 0


@dataclass(frozen=True)
class IdInfo:
    """Description of one detectable filesystem type."""

    name: str
    usage: str
    probefunc: Callable[["Probe", Magic], bool]
    magics: tuple[Magic, ...]
    minsz: int = 0


def _label_text(raw: bytes) -> str | None:
    text = raw.split(b"\0", 1)[0].decode("utf-8", "replace").rstrip()
    return text or None


def _format_uuid(data: bytes) -> str | None:
    raw = bytes(data[:16])
    if len(raw) < 16:
        raise ValueError("a UUID needs 16 bytes")
    if not any(raw):
        return None
    return str(uuid.UUID(bytes=raw))


@dataclass
class Probe:
    """An image being probed and the values found in it."""

    data: bytes
    label: str | None = None
    uuid: str | None = None
    version: str | None = None
    values: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.data = bytes(self.data)

    def get_buffer(self, offset: int, length: int) -> bytes | None:
        """Return ``length`` bytes at ``offset``, or None if out of range."""
        if offset < 0 or length < 0 or offset + length > len(self.data):
            return None
        return self.data[offset:offset + length]

    def get_superblock(self, magic: Magic, size: int) -> bytes | None:
        """Return the ``size``-byte superblock that ``magic`` belongs to."""
        return self.get_buffer(magic.kboff << 10, size)

    def set_label(self, data: bytes) -> None:
        self.label = _label_text(bytes(data)[:LABEL_SIZE - 1])

    def set_utf8_label(self, data: bytes, encoding: Encoding | int) -> None:
        self.label = _label_text(encode_to_utf8(encoding, data, LABEL_SIZE))

    def set_uuid(self, data: bytes) -> None:
        value = _format_uuid(data)
        if value:
            self.uuid = value

    def set_uuid_as(self, data: bytes, name: str | None) -> None:
        value = _format_uuid(data)
        if not value:
            return
        if name is None:
            self.uuid = value
        else:
            self.values[name] = value

    def set_version(self, version: str) -> None:
        self.version = version


_BTRFS_SB_SIZE = 555
_BTRFS_FSID = slice(32, 48)
_BTRFS_DEV_UUID = slice(267, 283)
_BTRFS_LABEL = slice(299, 299 + 255)


def probe_btrfs(probe: Probe, magic: Magic) -> bool:
    """Read label and UUIDs from a btrfs superblock."""
    sb = probe.get_superblock(magic, _BTRFS_SB_SIZE)
    if sb is None:
        return False
    label = sb[_BTRFS_LABEL]
    if label[0]:
        probe.set_label(label)
    probe.set_uuid(sb[_BTRFS_FSID])
    probe.set_uuid_as(sb[_BTRFS_DEV_UUID], "UUID_SUB")
    return True


BTRFS_IDINFO = IdInfo(
    name="btrfs",
    usage=USAGE_FILESYSTEM,
    probefunc=probe_btrfs,
    magics=(Magic(b"_BHRfS_M", sboff=0x40, kboff=64),),
    minsz=1024 * 1024,
)