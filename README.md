# blocktools

Tools for finding, describing and mounting block devices on small Linux
systems. The package reads filesystem superblocks straight from devices or
image files, loads mount and swap rules from a UCI-style `fstab`
configuration (`/etc/config/fstab`), and mounts, unmounts and swaps
according to those rules.

## Installation

```
pip install .
```

No runtime dependencies beyond the Python standard library (Python 3.10 or
later). Mounting, unmounting and swap control run the system `mount`,
`umount`, `swapon` and `swapoff` programs (and `/sbin/mount.<type>` helpers
when the kernel lacks a filesystem driver), so they need root privileges on
Linux.

## Command line

Installing the package provides the `block` command:

```
block info [DEVICE...]   # show UUID, label, version, mount point and type
block detect             # print an fstab configuration for the devices found
block mount              # mount everything the configuration asks for
block umount [-a]        # unmount devices except extroot ones (-a includes /)
block remount            # umount followed by mount
```

The same entry point, started under the names `swapon` and `swapoff`,
handles swap:

```
swapon [-s] [-a] [[-p pri] DEVICE]
swapoff [-a] [DEVICE]
```

`swapon -s` prints `/proc/swaps`; `swapon -a` enables every detected swap
device; `swapoff -a` disables every entry listed in `/proc/swaps`.

When `check_fs` is set in the configuration, `block mount` runs the
matching checker (`fsck.fat`, `fsck.f2fs`, `e2fsck`, `btrfsck` or
`ntfsfix`) before mounting.

## Library use

Identify a filesystem in an image file (`blocktools.detect`):

```python
from blocktools.detect import probe_file

info = probe_file("disk.img")
if info is not None:
    print(info.type, info.uuid, info.label, info.version)
```

`probe_bytes(data, dev)` does the same for bytes already in memory.

Convert label text stored on disk into UTF-8 (`blocktools.encode`):

```python
from blocktools.encode import Encoding, encode_to_utf8

encode_to_utf8(Encoding.UTF16LE, b"d\x00a\x00t\x00a\x00", 64)  # b"data"
```

Read the mount configuration and look entries up (`blocktools.fstab`):

```python
from blocktools.fstab import config_from_text, load_config, parse_mount_options

config = config_from_text(open("/etc/config/fstab").read())
entry = config.find_block(uuid="0123-4567", label=None, device=None, target=None)

flags, extra = parse_mount_options("ro,noatime,compress=zstd")  # extra == "compress=zstd"
```

`load_config(prefix)` tries `<prefix>/upper/etc/config/fstab`,
`<prefix>/etc/config/fstab` and then `/etc/config/fstab`, and raises
`ConfigError` when none can be read.

`blocktools.devices` scans `/dev` for candidate nodes (`scan_devices`),
finds mount points in mountinfo text (`find_mount_point`,
`parse_mountinfo`), and renders `block info` and `block detect` output
(`format_block_info`, `format_block_uci`, `format_detect`).

## Supported formats

Superblock probing recognises btrfs, ext2, ext3, ext4, ext4dev, the ext
journal device (jbd), exFAT and F2FS.

## What it does not do

- Only the formats above are detected. Swap areas, vfat, NTFS, UBIFS and
  JFFS2 are not recognised by probing, so such devices are not listed,
  mounted or swapped on by `block` (an explicit `swapon DEVICE` still works).
- There are no `hotplug`, `autofs` or `extroot` subcommands: the package
  does not mount an external root or overlay, does not react to hotplug
  events, and provides no background daemon or automounter.