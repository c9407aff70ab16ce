import struct

from blocktools.exfat import EXFAT_IDINFO, probe_exfat
from blocktools.superblock import Probe

MAGIC = EXFAT_IDINFO.magics[0]
ROOT = 1024  # sector 2 with 512-byte sectors and one sector per cluster
SECOND = 1536


def label_entry(text):
    name = text.encode("utf-16-le")
    return bytes([0x83, len(text)]) + name.ljust(22, b"\0") + bytes(8)


def make_exfat(sector_shift=9, cluster_shift=0, signature=0xAA55, jump=b"\xEB\x76\x90"):
    img = bytearray(4096)
    img[0:3] = jump
    img[3:11] = b"EXFAT   "
    struct.pack_into("<IIIII", img, 80, 1, 1, 2, 16, 2)
    img[100:104] = bytes([0x11, 0x22, 0x33, 0x44])
    img[104] = 0
    img[105] = 1
    img[108] = sector_shift
    img[109] = cluster_shift
    struct.pack_into("<H", img, 510, signature)
    return img


def test_magic_location():
    img = make_exfat()
    assert Probe(img).get_buffer(MAGIC.sboff, len(MAGIC.magic)) == MAGIC.magic


def test_label_uuid_and_version():
    img = make_exfat()
    img[ROOT:ROOT + 32] = label_entry("TEST")
    probe = Probe(img)
    assert probe_exfat(probe, MAGIC) is True
    assert probe.label == "TEST"
    assert probe.uuid == "4433-2211"
    assert probe.version == "1.0"


def test_no_label_still_matches():
    probe = Probe(make_exfat())
    assert probe_exfat(probe, MAGIC) is True
    assert probe.label is None


def test_label_length_is_capped_at_eleven_characters():
    img = make_exfat()
    entry = bytearray(label_entry("ABCDEFGHIJK"))
    entry[1] = 30
    img[ROOT:ROOT + 32] = entry
    probe = Probe(img)
    assert probe_exfat(probe, MAGIC) is True
    assert probe.label == "ABCDEFGHIJK"


def test_label_found_in_next_cluster():
    img = make_exfat()
    for offset in range(ROOT, ROOT + 512, 32):
        img[offset] = 0x85
    struct.pack_into("<I", img, 512 + 2 * 4, 3)
    img[SECOND:SECOND + 32] = label_entry("NEXT")
    probe = Probe(img)
    assert probe_exfat(probe, MAGIC) is True
    assert probe.label == "NEXT"


def test_cluster_chain_end_stops_search():
    img = make_exfat()
    for offset in range(ROOT, ROOT + 512, 32):
        img[offset] = 0x85
    struct.pack_into("<I", img, 512 + 2 * 4, 0xFFFFFFFF)
    img[SECOND:SECOND + 32] = label_entry("LOST")
    probe = Probe(img)
    assert probe_exfat(probe, MAGIC) is True
    assert probe.label is None


def test_bad_boot_signature():
    assert probe_exfat(Probe(make_exfat(signature=0x1234)), MAGIC) is False


def test_bad_jump_boot():
    assert probe_exfat(Probe(make_exfat(jump=b"\xEB\x3C\x90")), MAGIC) is False


def test_nonzero_must_be_zero_region():
    img = make_exfat()
    img[20] = 1
    assert probe_exfat(Probe(img), MAGIC) is False


def test_zero_cluster_size_rejected():
    assert probe_exfat(Probe(make_exfat(sector_shift=40)), MAGIC) is False


def test_truncated_image():
    probe = Probe(make_exfat()[:300])
    assert probe_exfat(probe, MAGIC) is False
    assert probe.uuid is None