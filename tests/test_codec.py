"""Unit tests for the single-container codec.

WHY: The codec is the only code that knows the on-disk layout. A wrong
offset or CRC here corrupts every file the tool writes.

HOW: Containers are built by conftest.write_container (independent of the
codec) and read back; saved files are compared byte for byte.

RULES:
- Round trip of an unmodified title is byte-identical
- The stored CRC always matches the compressed block
"""

import struct
import zlib

import pytest

from xsf_converter.core.codec import (
    ContainerFormatError,
    UnsupportedFormatError,
    load_container,
    read_tag_block,
    save_container,
)
from xsf_converter.core.ir import BinaryType
from xsf_converter.core.resolver import load_title
from xsf_converter.formats import DSF, SSF


def _stored_crc_matches(data):
    _, reserved_size, compressed_size, crc = struct.unpack_from("<4I", data, 0)
    start = 16 + reserved_size
    return zlib.crc32(data[start:start + compressed_size]) & 0xFFFFFFFF == crc


class TestLoadContainer:
    """Reading containers and raw dumps."""

    def test_program_placed_after_header(self, make_container):
        path = make_container("a.ssf", b"\x01\x02\x03", load_address=0x100, tags="title=A")
        loaded = load_container(path)
        assert loaded.xsf_format is SSF
        assert loaded.binary_type is BinaryType.MINIXSF
        assert loaded.entry.start == 0x104
        assert loaded.entry.end == 0x107
        assert loaded.program == b"\x01\x02\x03"
        assert loaded.entry.tags == b"[TAG]title=A"
        assert loaded.warnings == []

    def test_dsf_magic_detected(self, make_container):
        path = make_container("a.dsf", b"\x00" * 8, xsf_format=DSF)
        assert load_container(path).xsf_format is DSF

    def test_wrong_crc_is_a_warning(self, make_container):
        path = make_container("a.ssf", b"\xAA" * 16, crc=0x12345678)
        loaded = load_container(path)
        assert loaded.program == b"\xAA" * 16
        assert "Wrong CRC" in loaded.warnings

    def test_metadata_only_skips_inflate(self, tmp_path):
        path = tmp_path / "broken.ssf"
        data = struct.pack("<4I", SSF.magic, 0, 4, 0) + b"junk" + b"[TAG]title=Broken"
        path.write_bytes(data)
        loaded = load_container(path, load_payload=False)
        assert loaded.entry.tags == b"[TAG]title=Broken"
        assert loaded.program == b""
        with pytest.raises(ContainerFormatError):
            load_container(path)

    def test_truncated_compressed_block(self, make_container):
        path = make_container("a.ssf", b"\x55" * 64)
        path.write_bytes(path.read_bytes()[:20])
        with pytest.raises(ContainerFormatError):
            load_container(path)

    def test_reserved_area_kept(self, make_container):
        path = make_container("a.ssf", b"\x01", reserved=b"RSVD")
        assert load_container(path).entry.reserved == b"RSVD"

    def test_format_hint_must_match_magic(self, make_container):
        path = make_container("a.ssf", b"\x01")
        with pytest.raises(UnsupportedFormatError):
            load_container(path, xsf_format=DSF)

    def test_unknown_magic_is_raw_bin(self, tmp_path):
        path = tmp_path / "dump.ssfbin"
        path.write_bytes(struct.pack("<I", 0x200) + b"\x09" * 12)
        loaded = load_container(path)
        assert loaded.binary_type is BinaryType.BIN
        assert loaded.xsf_format is SSF
        assert loaded.entry.start == 4
        assert loaded.entry.end == 16
        assert loaded.entry.tags == b""

    def test_raw_dump_with_high_first_word_is_dsf(self, tmp_path):
        path = tmp_path / "dump.bin"
        path.write_bytes(struct.pack("<I", 0x100000) + b"\x00" * 4)
        assert load_container(path).xsf_format is DSF

    def test_missing_tag_block_gives_empty_tags(self, make_container):
        path = make_container("a.ssf", b"\x01")
        assert load_container(path).entry.tags == b""


class TestReadTagBlock:
    def test_reads_tags_only(self, make_container):
        path = make_container("a.ssf", b"\x00" * 1000, tags="_lib=x.ssflib")
        assert read_tag_block(path) == b"[TAG]_lib=x.ssflib"

    def test_non_container_has_no_tags(self, tmp_path):
        path = tmp_path / "raw.bin"
        path.write_bytes(b"\x00" * 8)
        assert read_tag_block(path) == b""


class TestSaveContainer:
    """Writing entries back out."""

    def test_round_trip_is_byte_identical(self, make_container, tmp_path):
        path = make_container(
            "song.ssf", bytes(range(256)) * 4, load_address=0x2000,
            tags="title=Song\nartist=Someone", reserved=b"\x01\x02",
        )
        table = load_title(path, load_libraries=False)
        out = tmp_path / "copy.ssf"
        assert save_container(table, table.primary(), out) is True
        assert out.read_bytes() == path.read_bytes()

    def test_stored_crc_matches_compressed_block(self, make_container, tmp_path):
        path = make_container("song.ssf", b"\x10\x20" * 300, tags="title=Song")
        table = load_title(path)
        out = tmp_path / "out.ssf"
        save_container(table, table.primary(), out)
        assert _stored_crc_matches(out.read_bytes())

    def test_zero_length_program(self, make_container, tmp_path):
        path = make_container("song.ssf", b"\x10" * 32, load_address=0x40)
        table = load_title(path)
        entry = table.primary()
        entry.start = entry.end = table.header_size
        out = tmp_path / "empty.minissf"
        assert save_container(table, entry, out) is True
        reloaded = load_container(out)
        assert reloaded.program == b""
        assert reloaded.entry.start == reloaded.entry.end
        assert _stored_crc_matches(out.read_bytes())

    def test_span_outside_image_is_refused(self, make_container, tmp_path):
        table = load_title(make_container("song.ssf", b"\x10" * 8))
        entry = table.primary()
        entry.end = len(table.image) + 1
        assert save_container(table, entry, tmp_path / "bad.ssf") is False
        assert not (tmp_path / "bad.ssf").exists()

    def test_unwritable_path_returns_false(self, make_container, tmp_path):
        table = load_title(make_container("song.ssf", b"\x10" * 8))
        assert save_container(table, table.primary(), tmp_path / "missing" / "x.ssf") is False
