"""The block command: listing, mounting and unmounting block devices and swap."""

from __future__ import annotations

import getopt
import logging
import os
import posixpath
import re
import signal
import stat
import subprocess
import sys
from collections.abc import Sequence

from .detect import ProbeInfo
from .devices import (
    find_block_info,
    find_mount_point,
    format_block_info,
    format_detect,
    probe_device,
    scan_devices,
)
from .fstab import (
    SWAP_FLAG_PREFER,
    SWAP_FLAG_PRIO_MASK,
    SWAP_FLAG_PRIO_SHIFT,
    Config,
    ConfigError,
    MountEntry,
    MountType,
    flags_to_options,
    load_config,
)

log = logging.getLogger(__name__)

AUTOFS_MOUNT_PATH = "/tmp/run/blockd"
MOUNT_HELPER_DIR = "/sbin"
PROC_SWAPS = "/proc/swaps"

MOUNT_CMD = "mount"
UMOUNT_CMD = "umount"
SWAPON_CMD = "swapon"
SWAPOFF_CMD = "swapoff"

NTFS_FILESYSTEMS = ("ntfs3", "ntfs-3g", "antfs", "ntfs")

# Filesystem type prefix, checker and the option it is run with.
_FSCK_TOOLS = (
    ("vfat", "/usr/sbin/fsck.fat", "-p"),
    ("f2fs", "/usr/sbin/fsck.f2fs", "-f"),
    ("ext", "/usr/sbin/e2fsck", "-p"),
    ("btrfs", "/usr/bin/btrfsck", "--repair"),
    ("ntfs", "/usr/bin/ntfsfix", "-b"),
)

_UNKNOWN_FS = "unknown filesystem type"

_SWAPON_USAGE = (
    "Usage: swapon [-s] [-a] [[-p pri] DEVICE]\n\n"
    "\tStart swapping on [DEVICE]\n"
    " -a\tStart swapping on all swap devices\n"
    " -p pri\tSet priority of swap device\n"
    " -s\tShow summary\n"
)

_SWAPOFF_USAGE = (
    "Usage: swapoff [-a] [DEVICE]\n\n"
    "\tStop swapping on DEVICE\n"
    " -a\tStop swapping on all swap devices"
)


class BlockError(Exception):
    """A block device operation failed."""


def _basename(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return "/" if path else "."
    return posixpath.basename(stripped)


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def _run_tool(cmd: Sequence[str]) -> None:
    try:
        result = subprocess.run(
            list(cmd), stderr=subprocess.PIPE, text=True, errors="replace", check=False
        )
    except OSError as exc:
        raise BlockError(f"cannot run {cmd[0]}: {exc}") from exc
    if result.returncode:
        message = (result.stderr or "").strip()
        raise BlockError(message or f"{cmd[0]} failed with status {result.returncode}")


def fsck_command(info: ProbeInfo) -> list[str] | None:
    """Return the checker command line for ``info``, or None for UBIFS.

    Raises BlockError for filesystem types that have no checker.
    """
    if info.type.startswith("ubifs"):
        return None
    for prefix, tool, option in _FSCK_TOOLS:
        if info.type.startswith(prefix):
            return [tool, option, info.dev]
    raise BlockError(f"{info.type} is not supported")


def check_filesystem(info: ProbeInfo) -> int | None:
    """Run the filesystem checker on ``info`` and return its exit status.

    Returns None when no check was run; failures are logged.
    """
    try:
        cmd = fsck_command(info)
    except BlockError as exc:
        log.error("check_filesystem: %s", exc)
        return None
    if cmd is None:
        return None
    if not os.path.exists(cmd[0]):
        log.error("check_filesystem: %s not found", cmd[0])
        return None
    try:
        result = subprocess.run(cmd, check=False)
    except OSError as exc:
        log.error("check_filesystem: cannot run %s: %s", cmd[0], exc)
        return None
    code = result.returncode
    if code > 0:
        log.error("check_filesystem: %s returned %d", cmd[0], code)
    elif code < 0:
        log.error("check_filesystem: %s terminated by %s", cmd[0], signal.strsignal(-code))
    return code


def exec_mount(source: str, target: str, fstype: str, options: str | None = None) -> None:
    """Mount through the ``mount.<fstype>`` helper; raise BlockError on failure."""
    helper = os.path.join(MOUNT_HELPER_DIR, f"mount.{fstype}")
    try:
        st = os.stat(helper)
    except OSError:
        st = None
    if st is None or not stat.S_ISREG(st.st_mode) or not st.st_mode & stat.S_IXUSR:
        raise BlockError(f'No "mount.{fstype}" utility available')

    cmd = [helper]
    if options:
        cmd += ["-o", options]
    cmd += [source, target]
    try:
        result = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise BlockError(f"mount.{fstype}: {exc}") from exc
    for line in (result.stderr or "").splitlines():
        log.error("mount.%s: %s", fstype, line)
    if result.returncode:
        raise BlockError(f"mount.{fstype}: failed with status {result.returncode}")


def _kernel_options(entry: MountEntry | None) -> str | None:
    if entry is None:
        return None
    return flags_to_options(entry.flags, entry.options).strip(",") or None


def _kernel_mount(source: str, target: str, fstype: str, options: str | None) -> bool:
    """Mount with the kernel driver; False if the kernel lacks ``fstype``."""
    cmd = [MOUNT_CMD, "-t", fstype]
    if options:
        cmd += ["-o", options]
    cmd += [source, target]
    try:
        result = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise BlockError(f"cannot run {MOUNT_CMD}: {exc}") from exc
    if result.returncode == 0:
        return True
    message = (result.stderr or "").strip()
    if _UNKNOWN_FS in message:
        return False
    raise BlockError(message or f"mount failed with status {result.returncode}")


def handle_mount(
    source: str, target: str, fstype: str, entry: MountEntry | None = None
) -> str:
    """Mount ``source`` on ``target`` and return the filesystem type used.

    NTFS is tried with each known driver in turn. When the kernel knows none
    of the types, the ``mount.<type>`` helpers are tried instead.
    """
    filesystems = NTFS_FILESYSTEMS if fstype == "ntfs" else (fstype,)
    options = _kernel_options(entry)
    for fs in filesystems:
        if _kernel_mount(source, target, fs, options):
            return fs

    helper_options = flags_to_options(entry.flags, entry.options) if entry else None
    error: BlockError | None = None
    for fs in filesystems:
        try:
            exec_mount(source, target, fs, helper_options)
        except BlockError as exc:
            error = exc
        else:
            return fs
    assert error is not None
    raise error


def mount_target(
    info: ProbeInfo,
    entry: MountEntry | None = None,
    anon_mount: bool = False,
    hotplug: bool = False,
) -> str | None:
    """Decide where ``info`` is to be mounted.

    Returns the target directory, or None when there is no reason to mount.
    Raises BlockError when the configuration forbids mounting here: extroot
    entries, and autofs entries outside of hotplug handling.
    """
    device = _basename(info.dev)
    if entry is not None:
        if entry.extroot:
            raise BlockError(f"{info.dev} is configured as extroot")
        if entry.autofs:
            if hotplug:
                return None
            raise BlockError(f"{info.dev} is mounted through autofs")
        return entry.target or f"/mnt/{device}"
    if anon_mount:
        return f"/mnt/{device}"
    return None


def _swapon(path: str, flags: int) -> None:
    cmd = [SWAPON_CMD]
    if flags & SWAP_FLAG_PREFER:
        cmd += ["-p", str((flags & SWAP_FLAG_PRIO_MASK) >> SWAP_FLAG_PRIO_SHIFT)]
    cmd.append(path)
    _run_tool(cmd)


def _swapoff(path: str) -> None:
    _run_tool([SWAPOFF_CMD, path])


def _handle_swapfiles(config: Config, on: bool) -> None:
    for m in config:
        if m.type is not MountType.SWAP or not m.target:
            continue
        try:
            st = os.stat(m.target)
        except OSError:
            continue
        if not stat.S_ISREG(st.st_mode):
            continue
        info = probe_device(m.target)
        if info is None or info.type != "swap":
            continue
        try:
            if on:
                _swapon(info.dev, m.prio)
            else:
                _swapoff(info.dev)
        except BlockError as exc:
            log.error("swap %s: %s", info.dev, exc)


def _mount_device(info: ProbeInfo, config: Config) -> bool:
    device = _basename(info.dev)

    if info.type == "swap":
        m = config.find_swap(info.uuid, info.label, device)
        if m is not None or config.anon_swap:
            try:
                _swapon(info.dev, m.prio if m is not None else 0)
            except BlockError as exc:
                log.error("failed to swapon %s: %s", info.dev, exc)
        return True

    m = config.find_block(info.uuid, info.label, device)
    if m is not None and m.extroot:
        return False

    mp = find_mount_point(info.dev)
    if mp:
        if m is not None and m.target and m.target != mp:
            log.error("%s is already mounted on %s", info.dev, mp)
            return False
        return True

    try:
        target = mount_target(info, m, config.anon_mount, False)
    except BlockError:
        return False
    if target is None:
        return True

    if config.check_fs:
        check_filesystem(info)

    try:
        os.makedirs(target, 0o755, exist_ok=True)
    except OSError:
        pass
    if os.path.islink(target):
        try:
            os.unlink(target)
        except OSError:
            pass

    try:
        handle_mount(info.dev, target, info.type, m)
    except BlockError as exc:
        log.error("mounting %s (%s) as %s failed - %s", info.dev, info.type, target, exc)
        return False

    _handle_swapfiles(config, True)
    return True


def _umount_device(path: str, all_mounts: bool) -> bool:
    dev = path if len(path) > 5 and path.startswith("/dev/") else f"/dev/{path}"
    mp = find_mount_point(dev)
    if mp is None:
        return False
    if mp == "/" and not all_mounts:
        return True
    try:
        _run_tool([UMOUNT_CMD, "-l", mp])
    except BlockError as exc:
        log.error("unmounting %s (%s) failed - %s", path, mp, exc)
        return False
    log.info("unmounted %s (%s)", path, mp)
    try:
        os.rmdir(mp)
    except OSError:
        pass
    return True


def _is_block_or_file(path: str) -> bool:
    try:
        st = os.stat(path)
    except OSError:
        return False
    return stat.S_ISBLK(st.st_mode) or stat.S_ISREG(st.st_mode)


def main_info(args: Sequence[str]) -> int:
    """Print the probed devices, or only those named in ``args``."""
    devices = scan_devices(True)
    if not args:
        for info in devices:
            sys.stdout.write(format_block_info(info, find_mount_point(info.dev)))
        return 0
    for path in args:
        try:
            st = os.stat(path)
        except OSError:
            log.error("failed to stat %s", path)
            continue
        is_char_ubi = stat.S_ISCHR(st.st_mode) and os.major(st.st_rdev) == 250
        if not stat.S_ISBLK(st.st_mode) and not is_char_ubi:
            log.error("%s is not a block device", path)
            continue
        info = find_block_info(devices, path=path)
        if info is not None:
            sys.stdout.write(format_block_info(info, find_mount_point(info.dev)))
    return 0


def main_detect(args: Sequence[str]) -> int:
    """Print an fstab proposal for the devices present."""
    sys.stdout.write(format_detect(scan_devices(False)))
    return 0


def main_mount(args: Sequence[str]) -> int:
    """Mount every configured or anonymous device and enable swap files."""
    try:
        config = load_config()
    except ConfigError as exc:
        log.error("%s", exc)
        return 1
    for info in scan_devices(True):
        _mount_device(info, config)
    _handle_swapfiles(config, True)
    return 0


def main_umount(args: Sequence[str]) -> int:
    """Unmount every device except extroot; ``-a`` includes the root."""
    try:
        config = load_config()
    except ConfigError as exc:
        log.error("%s", exc)
        return 1
    _handle_swapfiles(config, False)
    devices = scan_devices(True)
    all_mounts = list(args) == ["-a"]
    for info in devices:
        if info.type == "swap":
            continue
        m = config.find_block(info.uuid, info.label, _basename(info.dev))
        if m is not None and m.extroot:
            continue
        _umount_device(info.dev, all_mounts)
    return 0


def _swapon_usage() -> int:
    sys.stderr.write(_SWAPON_USAGE)
    return 1


def main_swapon(args: Sequence[str]) -> int:
    """Handle the swapon command line (arguments after the program name)."""
    try:
        opts, operands = getopt.gnu_getopt(list(args), "ap:s")
    except getopt.GetoptError:
        return _swapon_usage()

    flags = 0
    for opt, value in opts:
        if opt == "-s":
            try:
                with open(PROC_SWAPS, encoding="utf-8", errors="replace") as fh:
                    sys.stdout.write(fh.read())
            except OSError:
                log.error("failed to open %s", PROC_SWAPS)
                return 1
            return 0
        if opt == "-a":
            for info in scan_devices(False):
                if info.type != "swap":
                    continue
                try:
                    _swapon(info.dev, 0)
                except BlockError:
                    log.error("failed to swapon %s", info.dev)
            return 0
        if opt == "-p":
            pri = _atoi(value)
            if pri >= 0:
                flags = ((pri << SWAP_FLAG_PRIO_SHIFT) & SWAP_FLAG_PRIO_MASK) | SWAP_FLAG_PREFER

    if len(operands) != 1:
        return _swapon_usage()

    path = operands[0]
    if not _is_block_or_file(path):
        log.error("%s is not a block device or file", path)
        return 1
    try:
        _swapon(path, flags)
    except BlockError as exc:
        log.error("failed to swapon %s (%s)", path, exc)
        return 1
    return 0


def main_swapoff(args: Sequence[str]) -> int:
    """Handle the swapoff command line (arguments after the program name)."""
    if len(args) != 1:
        log.error("%s", _SWAPOFF_USAGE)
        return 1

    if args[0] == "-a":
        try:
            with open(PROC_SWAPS, encoding="utf-8", errors="replace") as fh:
                lines = fh.read().splitlines()
        except OSError:
            log.error("failed to open %s", PROC_SWAPS)
            return 1
        for line in lines[1:]:
            dev, sep, _ = line.partition(" ")
            if not sep:
                continue
            try:
                _swapoff(dev)
            except BlockError as exc:
                log.error("failed to swapoff %s (%s)", dev, exc)
        return 0

    path = args[0]
    if not _is_block_or_file(path):
        log.error("%s is not a block device or file", path)
        return 1
    try:
        _swapoff(path)
    except BlockError as exc:
        log.error("failed to swapoff %s (%s)", path, exc)
        return 1
    return 0


_BLOCK_COMMANDS = {
    "info": main_info,
    "detect": main_detect,
    "mount": main_mount,
    "umount": main_umount,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Dispatch on the program name (block, swapon, swapoff) and subcommand."""
    argv = list(sys.argv if argv is None else argv)
    base = _basename(argv[0]) if argv else "block"

    os.umask(0)
    logging.basicConfig(format=f"{base}: %(message)s", level=logging.WARNING)

    if base == "swapon":
        return main_swapon(argv[1:])
    if base == "swapoff":
        return main_swapoff(argv[1:])

    if len(argv) > 1 and base == "block":
        command, args = argv[1], argv[2:]
        handler = _BLOCK_COMMANDS.get(command)
        if handler is not None:
            return handler(args)
        if command == "remount":
            ret = main_umount(args)
            if not ret:
                ret = main_mount(args)
            return ret

    log.error("Usage: block <info|mount|umount|detect>")
    return 1