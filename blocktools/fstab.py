"""Loading of the fstab configuration: mount and swap sections and globals."""

from __future__ import annotations

import enum
import logging
import posixpath
import re
import shlex
from collections.abc import Iterator
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

DEFAULT_FSTAB = "/etc/config/fstab"

MS_RDONLY = 1
MS_NOSUID = 2
MS_NODEV = 4
MS_NOEXEC = 8
MS_SYNCHRONOUS = 16
MS_MANDLOCK = 64
MS_DIRSYNC = 128
MS_NOATIME = 1024
MS_NODIRATIME = 2048
MS_POSIXACL = 1 << 16
MS_RELATIME = 1 << 21
MS_STRICTATIME = 1 << 24
MS_NOUSER = 1 << 31

SWAP_FLAG_PREFER = 0x8000
SWAP_FLAG_PRIO_MASK = 0x7FFF
SWAP_FLAG_PRIO_SHIFT = 0

_MASK32 = 0xFFFFFFFF
_INT_MAX = 0x7FFFFFFF


def _int32(value: int) -> int:
    value &= _MASK32
    return value - (1 << 32) if value & 0x80000000 else value


# Signed 32-bit flag values: negative entries clear bits, positive ones set them.
MOUNT_FLAGS: tuple[tuple[str, int], ...] = tuple(
    (name, _int32(flag))
    for name, flag in (
        ("sync", MS_SYNCHRONOUS),
        ("async", ~MS_SYNCHRONOUS),
        ("dirsync", MS_DIRSYNC),
        ("mand", MS_MANDLOCK),
        ("nomand", ~MS_MANDLOCK),
        ("atime", ~MS_NOATIME),
        ("noatime", MS_NOATIME),
        ("dev", ~MS_NODEV),
        ("nodev", MS_NODEV),
        ("diratime", ~MS_NODIRATIME),
        ("nodiratime", MS_NODIRATIME),
        ("exec", ~MS_NOEXEC),
        ("noexec", MS_NOEXEC),
        ("suid", ~MS_NOSUID),
        ("nosuid", MS_NOSUID),
        ("rw", ~MS_RDONLY),
        ("ro", MS_RDONLY),
        ("relatime", MS_RELATIME),
        ("norelatime", ~MS_RELATIME),
        ("strictatime", MS_STRICTATIME),
        ("acl", MS_POSIXACL),
        ("noacl", ~MS_POSIXACL),
        ("nouser_xattr", MS_NOUSER),
        ("user_xattr", ~MS_NOUSER),
    )
)
_FLAG_BY_NAME = dict(MOUNT_FLAGS)


class ConfigError(Exception):
    """The configuration could not be read or parsed."""


class MountType(enum.Enum):
    MOUNT = "mount"
    SWAP = "swap"


@dataclass
class MountEntry:
    """One mount or swap section of the configuration."""

    type: MountType
    uuid: str | None = None
    label: str | None = None
    device: str | None = None
    target: str | None = None
    options: str | None = None
    flags: int = 0
    autofs: int = 0
    extroot: bool = False
    overlay: bool = False
    prio: int = 0

    @property
    def key(self) -> str | None:
        for value in (self.uuid, self.label, self.device):
            if value is not None:
                return value
        return None


@dataclass
class Config:
    """Global settings and the mount and swap entries keyed by identifier."""

    anon_mount: bool = False
    anon_swap: bool = False
    auto_mount: bool = False
    auto_swap: bool = False
    check_fs: bool = False
    delay_root: int = 0
    mounts: dict[str, MountEntry] = field(default_factory=dict)

    def __iter__(self) -> Iterator[MountEntry]:
        for key in sorted(self.mounts):
            yield self.mounts[key]

    def add(self, entry: MountEntry) -> None:
        key = entry.key
        if key is not None:
            self.mounts[key] = entry

    def find_swap(self, uuid=None, label=None, device=None) -> MountEntry | None:
        """Return the first swap entry matching any of the given identifiers."""
        for m in self:
            if m.type is not MountType.SWAP:
                continue
            if uuid is not None and m.uuid is not None and m.uuid.lower() == uuid.lower():
                return m
            if label is not None and m.label is not None and m.label == label:
                return m
            if device is not None and m.device is not None and m.device == device:
                return m
        return None

    def find_block(self, uuid=None, label=None, device=None, target=None) -> MountEntry | None:
        """Return the first mount entry matching any of the given identifiers."""
        for m in self:
            if m.type is not MountType.MOUNT:
                continue
            if m.uuid is not None and uuid is not None and m.uuid.lower() == uuid.lower():
                return m
            if m.label is not None and label is not None and m.label == label:
                return m
            if m.target is not None and target is not None and m.target == target:
                return m
            if m.device is not None and device is not None and m.device == device:
                return m
        return None


def parse_mount_options(optstr: str | None) -> tuple[int, str | None]:
    """Split an option string into mount flags and the remaining options.

    Returns ``(flags, options)``; ``options`` is None for an empty input.
    """
    if not optstr:
        return 0, None
    flags = 0
    rest: list[str] = []
    for token in optstr.split(","):
        flag = _FLAG_BY_NAME.get(token)
        if flag is None:
            rest.append(token)
        elif flag < 0:
            flags &= flag & _MASK32
        else:
            flags |= flag
    return flags & _MASK32, ",".join(rest)


def flags_to_options(flags: int, options: str | None) -> str:
    """Turn mount flags back into an option string for a mount helper."""
    names = "".join(
        f"{name},"
        for name, flag in MOUNT_FLAGS
        if 0 < flag < _INT_MAX and flags & flag
    )
    if options is None:
        return names
    return (f"{options}," + names)[:-1]


def _basename(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return "/" if path else "."
    return posixpath.basename(stripped)


_STRTOL = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)?")


def _to_u32(value) -> int | None:
    if not isinstance(value, str):
        return None
    match = _STRTOL.fullmatch(value)
    if match is None:
        return None
    sign, digits = match.groups()
    if not digits:
        number = 0
    elif digits[:2].lower() == "0x":
        number = int(digits[2:], 16)
    elif digits.startswith("0"):
        number = int(digits, 8)
    else:
        number = int(digits)
    if sign == "-":
        number = -number
    return number & _MASK32


def _string(options: dict, name: str) -> str | None:
    value = options.get(name)
    return value if isinstance(value, str) else None


def parse_uci(text: str) -> list[tuple[str, str | None, dict]]:
    """Parse configuration text into ``(type, name, options)`` sections.

    Option values are strings; ``list`` entries collect into Python lists.
    """
    sections: list[tuple[str, str | None, dict]] = []
    for lineno, line in enumerate(text.splitlines(), 1):
        try:
            tokens = shlex.split(line, comments=True, posix=True)
        except ValueError as exc:
            raise ConfigError(f"line {lineno}: {exc}") from exc
        if not tokens:
            continue
        keyword, args = tokens[0], tokens[1:]
        if keyword == "package":
            continue
        if keyword == "config":
            if not args or len(args) > 2:
                raise ConfigError(f"line {lineno}: invalid section header")
            sections.append((args[0], args[1] if len(args) > 1 else None, {}))
            continue
        if keyword not in ("option", "list"):
            raise ConfigError(f"line {lineno}: unknown keyword {keyword!r}")
        if not sections:
            raise ConfigError(f"line {lineno}: {keyword} outside of a section")
        if not args or len(args) > 2:
            raise ConfigError(f"line {lineno}: invalid {keyword}")
        name = args[0]
        value = args[1] if len(args) > 1 else ""
        options = sections[-1][2]
        if keyword == "option":
            options[name] = value
        else:
            existing = options.get(name)
            if not isinstance(existing, list):
                existing = options[name] = []
            existing.append(value)
    return sections


def _mount_entry(name: str | None, options: dict) -> MountEntry | None:
    uuid = _string(options, "uuid")
    label = _string(options, "label")
    device = _string(options, "device")
    if uuid is None and label is None and device is None:
        return None
    enabled = _to_u32(options.get("enabled"))
    if enabled is not None and not enabled:
        return None

    target = _string(options, "target")
    flags, opts = parse_mount_options(_string(options, "options"))
    entry = MountEntry(
        type=MountType.MOUNT,
        uuid=uuid,
        label=label,
        device=_basename(device) if device is not None else None,
        target=target,
        options=opts,
        flags=flags,
        autofs=_to_u32(options.get("autofs")) or 0,
    )
    if target == "/":
        entry.extroot = True
    if target == "/overlay":
        entry.extroot = entry.overlay = True
    if target is not None and not target.startswith("/"):
        log.warning("ignoring mount section %s due to invalid target '%s'", name, target)
        return None
    return entry


def _swap_entry(options: dict) -> MountEntry | None:
    uuid = _string(options, "uuid")
    label = _string(options, "label")
    device = _string(options, "device")
    if uuid is None and label is None and device is None:
        return None
    prio = _to_u32(options.get("priority")) or 0
    if prio:
        prio = ((prio << SWAP_FLAG_PRIO_SHIFT) & SWAP_FLAG_PRIO_MASK) | SWAP_FLAG_PREFER
    enabled = _to_u32(options.get("enabled"))
    if enabled is not None and not enabled:
        return None
    return MountEntry(
        type=MountType.SWAP,
        uuid=uuid,
        label=label,
        device=_basename(device) if device is not None else None,
        target=device,
        prio=prio,
    )


def _apply_global(config: Config, options: dict) -> None:
    for name in ("anon_mount", "anon_swap", "auto_mount", "auto_swap", "check_fs"):
        if _to_u32(options.get(name)):
            setattr(config, name, True)
    delay = _to_u32(options.get("delay_root"))
    if delay is not None:
        config.delay_root = delay


def config_from_text(text: str) -> Config:
    """Build a Config from fstab configuration text."""
    config = Config()
    for section_type, name, options in parse_uci(text):
        entry = None
        if section_type == "mount":
            entry = _mount_entry(name, options)
        elif section_type == "swap":
            entry = _swap_entry(options)
        elif section_type == "global":
            _apply_global(config, options)
        if entry is not None:
            config.add(entry)
    return config


def load_config(prefix: str | None = None) -> Config:
    """Load fstab from under ``prefix`` if possible, else the system one.

    Raises ConfigError when no file can be loaded.
    """
    candidates = []
    if prefix:
        candidates += [f"{prefix}/upper/etc/config/fstab", f"{prefix}/etc/config/fstab"]
    candidates.append(DEFAULT_FSTAB)
    for path in candidates:
        log.info("attempting to load %s", path)
        try:
            with open(path, encoding="utf-8") as fh:
                return config_from_text(fh.read())
        except (OSError, UnicodeDecodeError, ConfigError) as exc:
            log.error("unable to load configuration (%s)", exc)
    raise ConfigError("no usable configuration")