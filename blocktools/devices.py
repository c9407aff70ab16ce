"""Discovery of block devices, their mount points and kernel tables."""

from __future__ import annotations

import glob
import os
import stat
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .detect import ProbeInfo, probe_file

SYSFS_MTD = "/sys/class/mtd"
PROC_MOUNTINFO = "/proc/self/mountinfo"
PROC_FILESYSTEMS = "/proc/filesystems"
PROC_MTD = "/proc/mtd"

_MTD_PATTERNS = ("/dev/mtdblock*", "/dev/ubiblock*", "/dev/ubi[0-9]*")
_DEVICE_PATTERNS = (
    "/dev/loop*",
    "/dev/mmcblk*",
    "/dev/sd*",
    "/dev/hd*",
    "/dev/md*",
    "/dev/nvme*",
    "/dev/vd*",
    "/dev/xvd*",
    "/dev/dm-*",
    "/dev/fit*",
)

_DETECT_HEADER = (
    "config 'global'\n"
    "\toption\tanon_swap\t'0'\n"
    "\toption\tanon_mount\t'0'\n"
    "\toption\tauto_swap\t'1'\n"
    "\toption\tauto_mount\t'1'\n"
    "\toption\tdelay_root\t'5'\n"
    "\toption\tcheck_fs\t'0'\n\n"
)


def _basename(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return "/" if path else "."
    return os.path.basename(stripped)


def _atoi(text: str) -> int:
    text = text.lstrip()
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    digits = ""
    for ch in text:
        if not ch.isdigit():
            break
        digits += ch
    return sign * int(digits) if digits else 0


def _read_sysfs_line(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            line = fh.readline()
    except OSError:
        return None
    if not line:
        return None
    # A 16-byte buffer holds at most 15 characters; the last one is dropped.
    return line[:15][:-1]


def mtdblock_is_nand(mtdnum: str, sysfs: str = SYSFS_MTD) -> bool:
    """Tell whether MTD partition ``mtdnum`` is NAND and must not be probed.

    Partitions named ``rootfs`` and ``rootfs_data`` are still probed.
    """
    kind = _read_sysfs_line(os.path.join(sysfs, f"mtd{mtdnum}", "type"))
    if kind != "nand":
        return False
    name = _read_sysfs_line(os.path.join(sysfs, f"mtd{mtdnum}", "name"))
    if name is None:
        return False
    return name not in ("rootfs", "rootfs_data")


def _ubi_suffix(path: str) -> str | None:
    if path[5:8] == "ubi" and path[8:9].isdigit() and path[8:9].isascii():
        return path[8:]
    return None


def probe_device(path: str, known: Iterable[ProbeInfo] = ()) -> ProbeInfo | None:
    """Probe one device node, skipping raw NAND and redundant UBI volumes.

    ``known`` holds devices probed earlier; a UBI volume is skipped when
    its ubiblock counterpart is among them.
    """
    if path.startswith("/dev/mtdblock") and mtdblock_is_nand(path[13:]):
        return None
    info = probe_file(path)
    if info is None:
        return None
    suffix = _ubi_suffix(path)
    if suffix is not None:
        # UBI volumes other than UBIFS need ubiblock to be mounted.
        if info.type != "ubifs":
            return None
        ubiblock = f"/dev/ubiblock{suffix}"
        if any(other.dev == ubiblock for other in known):
            return None
    return info


def scan_devices(include_mtd: bool = True) -> list[ProbeInfo]:
    """Probe every candidate device node and return those recognised."""
    patterns = (_MTD_PATTERNS if include_mtd else ()) + _DEVICE_PATTERNS
    devices: list[ProbeInfo] = []
    for pattern in patterns:
        for path in sorted(glob.glob(pattern)):
            info = probe_device(path, devices)
            if info is not None:
                devices.append(info)
    return devices


def find_block_info(
    devices: Sequence[ProbeInfo],
    uuid: str | None = None,
    label: str | None = None,
    path: str | None = None,
) -> ProbeInfo | None:
    """Find a device by UUID (case-insensitive), then label, then node name."""
    if uuid is not None:
        for info in devices:
            if info.uuid is not None and info.uuid.lower() == uuid.lower():
                return info
    if label is not None:
        for info in devices:
            if info.label is not None and info.label == label:
                return info
    if path is not None:
        name = _basename(path)
        for info in devices:
            if info.dev and _basename(info.dev) == name:
                return info
    return None


@dataclass(frozen=True)
class MountInfoEntry:
    """The fields of one mountinfo line that matter for lookups."""

    major: int
    minor: int
    mount_point: str
    source: str


def parse_mountinfo(text: str) -> list[MountInfoEntry]:
    """Parse mountinfo text; malformed lines are skipped."""
    entries = []
    for line in text.splitlines():
        fields = line.split(" ")
        if len(fields) < 10 or ":" not in fields[2]:
            continue
        major, minor = fields[2].split(":", 1)
        entries.append(MountInfoEntry(_atoi(major), _atoi(minor), fields[4], fields[8]))
    return entries


def find_mount_point(block: str, mountinfo: str | None = None) -> str | None:
    """Return where ``block`` is mounted, or None.

    A line matches when its source names ``block`` or, if ``block`` is a
    block device node, when its device numbers equal the node's.
    """
    if mountinfo is None:
        try:
            with open(PROC_MOUNTINFO, encoding="utf-8", errors="replace") as fh:
                mountinfo = fh.read()
        except OSError:
            return None
    try:
        st = os.stat(block)
    except OSError:
        st = None
    rdev = st.st_rdev if st is not None and stat.S_ISBLK(st.st_mode) else None
    for entry in parse_mountinfo(mountinfo):
        if entry.source == block:
            return entry.mount_point
        if rdev is not None and (entry.major, entry.minor) == (os.major(rdev), os.minor(rdev)):
            return entry.mount_point
    return None


def format_block_info(info: ProbeInfo, mount_point: str | None = None) -> str:
    """Render one device the way ``block info`` prints it."""
    parts = [f"{info.dev}:"]
    if info.uuid:
        parts.append(f' UUID="{info.uuid}"')
    if info.label:
        parts.append(f' LABEL="{info.label}"')
    if info.version:
        parts.append(f' VERSION="{info.version}"')
    if mount_point:
        parts.append(f' MOUNT="{mount_point}"')
    parts.append(f' TYPE="{info.type}"\n')
    return "".join(parts)


def format_block_uci(info: ProbeInfo, mount_point: str | None = None) -> str:
    """Render a disabled fstab section describing ``info``."""
    if info.type == "swap":
        lines = ["config 'swap'\n"]
    else:
        target = mount_point or f"/mnt/{_basename(info.dev)}"
        lines = ["config 'mount'\n", f"\toption\ttarget\t'{target}'\n"]
    if info.uuid:
        lines.append(f"\toption\tuuid\t'{info.uuid}'\n")
    else:
        lines.append(f"\toption\tdevice\t'{info.dev}'\n")
    lines.append("\toption\tenabled\t'0'\n\n")
    return "".join(lines)


def format_detect(
    devices: Iterable[ProbeInfo], mount_points: Mapping[str, str] | None = None
) -> str:
    """Render a complete fstab proposal for ``devices``.

    ``mount_points`` maps device nodes to mount points; when omitted they
    are looked up in the running system.
    """
    out = [_DETECT_HEADER]
    for info in devices:
        if info.type == "swap":
            mp = None
        elif mount_points is None:
            mp = find_mount_point(info.dev)
        else:
            mp = mount_points.get(info.dev)
        out.append(format_block_uci(info, mp))
    return "".join(out)


def fs_supported(name: str, filesystems: str | None = None) -> bool:
    """Tell whether the kernel filesystem table lists ``name``."""
    if filesystems is None:
        try:
            with open(PROC_FILESYSTEMS, encoding="utf-8", errors="replace") as fh:
                filesystems = fh.read()
        except OSError:
            return False
    for line in filesystems.splitlines():
        tokens = [t for t in line.replace("\t", "\n").split("\n") if t]
        if tokens and tokens[0] == "nodev":
            tokens = tokens[1:]
        if tokens and tokens[0] == name:
            return True
    return False


def find_block_mtd(name: str, mtd: str | None = None) -> str | None:
    """Return the mtdblock node of the first MTD line containing ``name``."""
    if mtd is None:
        try:
            with open(PROC_MTD, encoding="utf-8", errors="replace") as fh:
                mtd = fh.read()
        except OSError:
            return None
    for line in mtd.splitlines():
        if name not in line:
            continue
        head, sep, _ = line.partition(":")
        if not sep:
            continue
        return f"/dev/mtdblock{head[3:]}"
    return None