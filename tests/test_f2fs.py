import struct
import uuid

from blocktools.f2fs import F2FS_IDINFO, F2FS_MAGIC, probe_f2fs
from blocktools.superblock import Probe

UUID_BYTES = bytes(range(1, 17))


def make_image(major=1, minor=7, label="", uuid_bytes=UUID_BYTES):
    sb = bytearray(0x7C + 1024)
    sb[0:4] = F2FS_MAGIC
    struct.pack_into("<HH", sb, 4, major, minor)
    sb[0x6C:0x6C + 16] = uuid_bytes
    encoded = label.encode("utf-16-le")
    sb[0x7C:0x7C + len(encoded)] = encoded
    return bytes(0x400) + bytes(sb) + bytes(64)


def test_magic_location_matches_format():
    magic = F2FS_IDINFO.magics[0]
    image = make_image(minor=3)
    start = (magic.kboff << 10) + magic.sboff
    assert image[start:start + len(magic.magic)] == F2FS_MAGIC
    assert F2FS_IDINFO.name == "f2fs"
    probe = Probe(image)
    assert probe_f2fs(probe, magic) is True
    assert probe.version == "1.3"


def test_reads_label_uuid_and_version():
    probe = Probe(make_image(label="data"))
    assert probe_f2fs(probe, F2FS_IDINFO.magics[0]) is True
    assert probe.label == "data"
    assert probe.uuid == str(uuid.UUID(bytes=UUID_BYTES))
    assert probe.version == "1.7"


def test_empty_label_is_not_set():
    probe = Probe(make_image(label=""))
    assert probe_f2fs(probe, F2FS_IDINFO.magics[0]) is True
    assert probe.label is None
    assert probe.version == "1.7"


def test_version_one_zero_gives_no_details():
    probe = Probe(make_image(major=1, minor=0, label="data"))
    assert probe_f2fs(probe, F2FS_IDINFO.magics[0]) is True
    assert probe.label is None
    assert probe.uuid is None
    assert probe.version is None


def test_short_image_is_rejected():
    probe = Probe(make_image()[:0x400 + 100])
    assert probe_f2fs(probe, F2FS_IDINFO.magics[0]) is False
    assert probe.label is None


def test_zero_uuid_is_not_set():
    probe = Probe(make_image(label="x", uuid_bytes=bytes(16)))
    assert probe_f2fs(probe, F2FS_IDINFO.magics[0]) is True
    assert probe.uuid is None
    assert probe.label == "x"