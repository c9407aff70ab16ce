import pytest

from blocktools.encode import Encoding, encode_to_utf8


def test_latin1_ascii_passes_through():
    assert encode_to_utf8(Encoding.LATIN1, b"abc", 64) == b"abc"


def test_latin1_high_byte_becomes_two_bytes():
    assert encode_to_utf8(Encoding.LATIN1, "é".encode("latin-1"), 64) == "é".encode("utf-8")


def test_utf16le_round_trip():
    text = "Disk é€"
    assert encode_to_utf8(Encoding.UTF16LE, text.encode("utf-16-le"), 64) == text.encode("utf-8")


def test_utf16be_round_trip():
    text = "Volume ü€"
    assert encode_to_utf8(Encoding.UTF16BE, text.encode("utf-16-be"), 64) == text.encode("utf-8")


def test_integer_encoding_is_accepted():
    assert encode_to_utf8(1, "ab".encode("utf-16-le"), 64) == b"ab"


def test_stops_at_nul():
    data = "ab".encode("utf-16-le") + b"\x00\x00" + "cd".encode("utf-16-le")
    assert encode_to_utf8(Encoding.UTF16LE, data, 64) == b"ab"


def test_latin1_stops_at_nul():
    assert encode_to_utf8(Encoding.LATIN1, b"xy\x00z", 64) == b"xy"


def test_size_leaves_room_for_terminator():
    assert encode_to_utf8(Encoding.LATIN1, b"abcd", 3) == b"ab"


def test_multibyte_character_is_never_split():
    data = "éé".encode("utf-16-le")
    result = encode_to_utf8(Encoding.UTF16LE, data, 4)
    assert result == "é".encode("utf-8")
    result.decode("utf-8")


def test_result_always_shorter_than_size():
    data = ("x€é" * 20).encode("utf-16-le")
    for size in (1, 2, 5, 17, 40):
        assert len(encode_to_utf8(Encoding.UTF16LE, data, size)) < size


def test_odd_trailing_byte_is_ignored():
    data = "ab".encode("utf-16-le") + b"c"
    assert encode_to_utf8(Encoding.UTF16LE, data, 64) == b"ab"


def test_empty_input():
    assert encode_to_utf8(Encoding.UTF16BE, b"", 64) == b""


def test_unknown_encoding_raises():
    with pytest.raises(ValueError):
        encode_to_utf8(7, b"abc", 64)