import io

import pytest

from devtree.data import Data, Marker, MarkerType


def test_append_cell_is_big_endian():
    d = Data().append_cell(0x12345678)
    assert bytes(d) == b"\x12\x34\x56\x78"


@pytest.mark.parametrize("bits", [8, 16, 32, 64])
def test_append_integer_roundtrip(bits):
    value = (1 << bits) - 2
    d = Data().append_integer(value, bits)
    assert len(d) == bits // 8
    assert int.from_bytes(bytes(d), "big") == value


def test_append_integer_truncates():
    d = Data().append_integer(0x1FF, 8)
    assert bytes(d) == b"\xff"


def test_append_integer_invalid_width():
    with pytest.raises(ValueError):
        Data().append_integer(1, 12)


def test_append_re_two_words():
    d = Data().append_re(0x1000, 0x2000)
    assert len(d) == 16
    assert int.from_bytes(bytes(d)[:8], "big") == 0x1000
    assert int.from_bytes(bytes(d)[8:], "big") == 0x2000


def test_append_addr_and_byte():
    d = Data().append_addr(7).append_byte(9)
    assert len(d) == 9
    assert int.from_bytes(bytes(d)[:8], "big") == 7
    assert bytes(d)[8] == 9


def test_append_align_pads_to_multiple():
    d = Data.from_bytes(b"abc").append_align(8)
    assert len(d) == 8
    assert bytes(d)[3:] == bytes(5)
    assert len(d.append_align(8)) == 8


def test_is_one_string():
    assert Data.from_bytes(b"hello\0").is_one_string()
    assert not Data.from_bytes(b"hello").is_one_string()
    assert not Data.from_bytes(b"a\0b\0").is_one_string()
    assert not Data().is_one_string()


def test_add_marker_records_offset():
    d = Data.from_bytes(b"ab").add_marker(MarkerType.LABEL, "lbl")
    assert d.markers == [Marker(2, MarkerType.LABEL, "lbl")]


def test_merge_shifts_markers():
    first = Data.from_bytes(b"xyz")
    second = Data().add_marker(MarkerType.REF_PATH, "node").append_data(b"q")
    first.merge(second)
    assert bytes(first) == b"xyzq"
    assert first.markers[0].offset == 3
    assert first.markers[0].ref == "node"


def test_insert_at_marker_shifts_later_markers():
    d = Data.from_bytes(b"ab")
    d.add_marker(MarkerType.REF_PATH, "x")
    d.append_data(b"cd")
    d.add_marker(MarkerType.LABEL, "end")
    d.insert_at_marker(d.markers[0], b"/p\0")
    assert bytes(d) == b"ab/p\0cd"
    assert d.markers[0].offset == 2
    assert d.markers[1].offset == len(d)


def test_insert_at_foreign_marker_rejected():
    d = Data.from_bytes(b"ab")
    with pytest.raises(ValueError):
        d.insert_at_marker(Marker(0, MarkerType.LABEL), b"z")


def test_insert_data_copies_markers():
    d = Data.from_bytes(b"a").add_marker(MarkerType.REF_PATH, "r").append_data(b"b")
    old = Data().add_marker(MarkerType.LABEL, "inner").append_data(b"XY")
    d.insert_data(d.markers[0], old)
    assert bytes(d) == b"aXYb"
    assert [m.type for m in d.markers] == [MarkerType.REF_PATH, MarkerType.LABEL]
    assert d.markers[1].offset == 1
    assert d.markers[1] is not old.markers[0]


def test_markers_of_type_filters():
    d = Data().add_marker(MarkerType.LABEL, "a").add_marker(
        MarkerType.REF_PHANDLE, "b").add_marker(MarkerType.LABEL, "c")
    assert [m.ref for m in d.markers_of_type(MarkerType.LABEL)] == ["a", "c"]


def test_from_file_reads_all_and_limits():
    content = b"0123456789"
    d = Data.from_file(io.BytesIO(content))
    assert bytes(d) == content
    assert d.markers[0].type is MarkerType.TYPE_NONE
    limited = Data.from_file(io.BytesIO(content), 4)
    assert bytes(limited) == content[:4]