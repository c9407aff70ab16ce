import pytest

from blocktools import fstab
from blocktools.fstab import (
    Config,
    ConfigError,
    MountEntry,
    MountType,
    config_from_text,
    flags_to_options,
    load_config,
    parse_mount_options,
    parse_uci,
)

SAMPLE = """
config 'global'
\toption\tanon_swap\t'0'
\toption\tanon_mount\t'1'
\toption\tauto_mount\t'1'
\toption\tdelay_root\t'5'
\toption\tcheck_fs\t'0'

config 'mount'
\toption\ttarget\t'/mnt/data'
\toption\tuuid\t'1234-ABCD'
\toption\toptions\t'ro,noatime,compress=zlib'
\toption\tenabled\t'1'

config 'mount'
\toption\ttarget\t'/overlay'
\toption\tdevice\t'/dev/sda2'

config 'mount'
\toption\ttarget\t'/mnt/off'
\toption\tlabel\t'off'
\toption\tenabled\t'0'

config 'mount' 'bad'
\toption\ttarget\t'relative'
\toption\tlabel\t'bad'

config 'mount'
\toption\ttarget\t'/mnt/nothing'

config 'swap'
\toption\tdevice\t'/dev/sda3'
\toption\tpriority\t'5'
"""


def test_parse_mount_options_separates_flags():
    flags, options = parse_mount_options("ro,noatime,compress=zlib")
    assert flags == fstab.MS_RDONLY | fstab.MS_NOATIME
    assert options == "compress=zlib"


def test_later_negative_flag_clears_bit():
    flags, options = parse_mount_options("ro,rw")
    assert flags == 0
    assert options == ""


def test_empty_options():
    assert parse_mount_options("") == (0, None)
    assert parse_mount_options(None) == (0, None)


def test_flags_to_options_round_trip_in_table_order():
    flags, options = parse_mount_options("ro,noatime,compress=zlib")
    assert flags_to_options(flags, options) == "compress=zlib,noatime,ro"


def test_flags_to_options_without_options_keeps_trailing_comma():
    flags, options = parse_mount_options("ro")
    assert flags_to_options(flags, None) == "ro,"


def test_flags_to_options_options_only():
    assert flags_to_options(0, "a=b") == "a=b"


def test_parse_uci_sections():
    sections = parse_uci("config mount 'x'\n option target /mnt\n list opt a\n list opt b\n")
    assert sections == [("mount", "x", {"target": "/mnt", "opt": ["a", "b"]})]


def test_parse_uci_option_outside_section():
    with pytest.raises(ConfigError):
        parse_uci("option target '/mnt'\n")


def test_parse_uci_unterminated_quote():
    with pytest.raises(ConfigError):
        parse_uci("config mount\n option target '/mnt\n")


def test_globals():
    config = config_from_text(SAMPLE)
    assert config.anon_mount is True
    assert config.anon_swap is False
    assert config.auto_mount is True
    assert config.check_fs is False
    assert config.delay_root == 5


def test_find_block_by_uuid_is_case_insensitive():
    config = config_from_text(SAMPLE)
    entry = config.find_block(uuid="1234-abcd")
    assert entry.target == "/mnt/data"
    assert entry.options == "compress=zlib"
    assert entry.extroot is False


def test_overlay_entry_is_extroot_with_basename_device():
    config = config_from_text(SAMPLE)
    entry = config.find_block(target="/overlay")
    assert entry.device == "sda2"
    assert entry.extroot is True
    assert entry.overlay is True
    assert config.find_block(device="sda2") is entry


def test_skipped_sections():
    config = config_from_text(SAMPLE)
    assert config.find_block(label="off") is None
    assert config.find_block(label="bad") is None
    assert config.find_block(target="/mnt/nothing") is None
    assert len(config.mounts) == 3


def test_swap_entry():
    config = config_from_text(SAMPLE)
    swap = config.find_swap(device="sda3")
    assert swap.type is MountType.SWAP
    assert swap.target == "/dev/sda3"
    assert swap.prio == 5 | fstab.SWAP_FLAG_PREFER
    assert config.find_block(device="sda3") is None


def test_disabled_swap_not_added():
    config = config_from_text("config swap\n option device /dev/sdb1\n option enabled 0\n")
    assert config.find_swap(device="sdb1") is None


def test_search_follows_sorted_key_order():
    config = Config()
    config.add(MountEntry(MountType.MOUNT, uuid="b", target="/x"))
    config.add(MountEntry(MountType.MOUNT, label="a", target="/y"))
    assert config.find_block(uuid="b", label="a").target == "/y"
    assert [m.key for m in config] == ["a", "b"]


def test_same_key_replaces_entry():
    text = (
        "config mount\n option uuid u1\n option target /one\n"
        "config mount\n option uuid u1\n option target /two\n"
    )
    config = config_from_text(text)
    assert config.find_block(uuid="u1").target == "/two"
    assert len(config.mounts) == 1


def test_load_config_prefers_upper(tmp_path):
    upper = tmp_path / "upper" / "etc" / "config"
    lower = tmp_path / "etc" / "config"
    upper.mkdir(parents=True)
    lower.mkdir(parents=True)
    (upper / "fstab").write_text("config mount\n option uuid up\n option target /up\n")
    (lower / "fstab").write_text("config mount\n option uuid low\n option target /low\n")
    config = load_config(str(tmp_path))
    assert config.find_block(uuid="up").target == "/up"
    assert config.find_block(uuid="low") is None


def test_load_config_falls_back_to_prefix_etc(tmp_path):
    lower = tmp_path / "etc" / "config"
    lower.mkdir(parents=True)
    (lower / "fstab").write_text("config mount\n option uuid low\n option target /low\n")
    config = load_config(str(tmp_path))
    assert config.find_block(uuid="low").target == "/low"


def test_load_config_without_any_file(tmp_path, monkeypatch):
    monkeypatch.setattr(fstab, "DEFAULT_FSTAB", str(tmp_path / "missing"))
    with pytest.raises(ConfigError):
        load_config(str(tmp_path))