"""Tests for library-chain resolution and load_title().

WHY: The order libraries are loaded in decides which bytes win where
files overlap. A wrong order, or an endless loop on a cyclic chain, makes
every later stage wrong.

HOW: Small chains of containers are written to tmp_path with distinct
fill bytes, loaded with load_title(), and the entry order and image
contents are checked.

RULES:
- Main chain deepest first, then the title, then _libN ascending
- Cycles and missing files raise distinct LibraryResolutionErrors
"""

import struct

import pytest

from xsf_converter.core.codec import UnsupportedFormatError
from xsf_converter.core.ir import BinaryType
from xsf_converter.core.resolver import (
    CyclicLibraryError,
    LibraryResolutionError,
    MissingLibraryError,
    load_title,
)
from xsf_converter.formats import DSF, SSF


def _names(table):
    return [entry.path.rsplit("/", 1)[-1].rsplit("\\", 1)[-1] for entry in table.entries]


class TestMainChain:
    def test_title_over_library(self, make_container):
        make_container("lib.ssflib", b"\x11" * 0x20, load_address=0x100)
        song = make_container("song.minissf", b"\x22" * 4, load_address=0x110, tags="_lib=lib.ssflib")
        table = load_title(song)
        assert _names(table) == ["lib.ssflib", "song.minissf"]
        assert [e.is_library for e in table.entries] == [True, False]
        assert len(table.image) == 0x20 + 4
        assert table.image_header_value() == 0x100
        assert bytes(table.image[4:0x14]) == b"\x11" * 0x10
        assert bytes(table.image[0x14:0x18]) == b"\x22" * 4
        assert bytes(table.image[0x18:]) == b"\x11" * 0xC

    def test_deepest_library_loads_first(self, make_container):
        make_container("c.ssflib", b"\x0C" * 8, load_address=0)
        make_container("b.ssflib", b"\x0B" * 4, load_address=0, tags="_lib=c.ssflib")
        song = make_container("a.minissf", b"\x0A" * 2, load_address=0, tags="_lib=b.ssflib")
        table = load_title(song)
        assert _names(table) == ["c.ssflib", "b.ssflib", "a.minissf"]
        assert bytes(table.image[4:12]) == b"\x0A\x0A\x0B\x0B\x0C\x0C\x0C\x0C"

    def test_library_in_subdirectory(self, make_container, tmp_path):
        (tmp_path / "libs").mkdir()
        make_container("libs/lib.ssflib", b"\x11" * 4)
        song = make_container("song.minissf", b"\x22", tags="_lib=libs/lib.ssflib")
        assert _names(load_title(song)) == ["lib.ssflib", "song.minissf"]


class TestAuxiliaryLibraries:
    def test_auxiliaries_after_title_ascending(self, make_container):
        make_container("main.ssflib", b"\x01" * 16)
        make_container("two.ssflib", b"\x02" * 2, load_address=0x10)
        make_container("three.ssflib", b"\x03" * 2, load_address=0x20)
        song = make_container(
            "song.minissf", b"\x09" * 4, load_address=0x4,
            tags="_lib3=three.ssflib\n_lib=main.ssflib\n_lib2=two.ssflib",
        )
        table = load_title(song)
        assert _names(table) == ["main.ssflib", "song.minissf", "two.ssflib", "three.ssflib"]
        assert table.primary_index() == 1

    def test_auxiliary_overwrites_title(self, make_container):
        make_container("aux.ssflib", b"\xAA" * 2, load_address=0)
        song = make_container("song.minissf", b"\x01" * 4, tags="_lib2=aux.ssflib")
        table = load_title(song)
        assert bytes(table.image[4:8]) == b"\xAA\xAA\x01\x01"


class TestResolutionErrors:
    def test_cycle_is_fatal(self, make_container):
        make_container("a.ssflib", b"\x01", tags="_lib=b.ssflib")
        make_container("b.ssflib", b"\x02", tags="_lib=a.ssflib")
        song = make_container("song.minissf", b"\x03", tags="_lib=a.ssflib")
        with pytest.raises(CyclicLibraryError) as excinfo:
            load_title(song)
        assert len(excinfo.value.chain) == 4

    def test_self_reference_is_a_cycle(self, make_container):
        song = make_container("song.minissf", b"\x03", tags="_lib=song.minissf")
        with pytest.raises(CyclicLibraryError):
            load_title(song)

    def test_missing_library(self, make_container):
        song = make_container("song.minissf", b"\x03", tags="_lib=nowhere.ssflib")
        with pytest.raises(MissingLibraryError) as excinfo:
            load_title(song)
        assert excinfo.value.library.name == "nowhere.ssflib"
        assert excinfo.value.referenced_by.name == "song.minissf"

    def test_shared_library_is_not_a_cycle(self, make_container):
        make_container("base.ssflib", b"\x01" * 4)
        make_container("mid.ssflib", b"\x02" * 2, tags="_lib=base.ssflib")
        song = make_container("song.minissf", b"\x03", tags="_lib=mid.ssflib\n_lib2=base.ssflib")
        assert _names(load_title(song)) == [
            "base.ssflib", "mid.ssflib", "song.minissf", "base.ssflib",
        ]

    def test_library_of_other_family(self, make_container):
        make_container("lib.dsflib", b"\x01", xsf_format=DSF)
        song = make_container("song.minissf", b"\x03", tags="_lib=lib.dsflib")
        with pytest.raises(LibraryResolutionError):
            load_title(song)

    def test_raw_file_where_container_required(self, tmp_path):
        path = tmp_path / "dump.ssfbin"
        path.write_bytes(b"\x00" * 16)
        with pytest.raises(UnsupportedFormatError):
            load_title(path, binary_type=BinaryType.MINIXSF)


class TestLoadTitleModes:
    def test_metadata_only(self, make_container):
        make_container("lib.ssflib", b"\x11" * 0x20)
        song = make_container("song.minissf", b"\x22", tags="_lib=lib.ssflib\ntitle=T")
        table = load_title(song, load_payload=False)
        assert len(table.image) == 0
        assert _names(table) == ["lib.ssflib", "song.minissf"]
        assert table.primary().tags.endswith(b"title=T")

    def test_without_libraries(self, make_container):
        make_container("lib.ssflib", b"\x11" * 0x20)
        song = make_container("song.minissf", b"\x22", load_address=8, tags="_lib=lib.ssflib")
        table = load_title(song, load_libraries=False)
        assert _names(table) == ["song.minissf"]
        assert bytes(table.image) == struct.pack("<I", 8) + b"\x22"

    def test_raw_dump(self, tmp_path):
        path = tmp_path / "dump.ssfbin"
        path.write_bytes(struct.pack("<I", 0x40) + b"\x05" * 8)
        table = load_title(path)
        assert table.binary_type is BinaryType.BIN
        assert table.xsf_format is SSF
        assert bytes(table.image) == path.read_bytes()

    def test_container_read_as_bin(self, make_container):
        song = make_container("song.ssf", b"\x01" * 4)
        table = load_title(song, binary_type=BinaryType.BIN)
        assert table.binary_type is BinaryType.BIN
        assert bytes(table.image) == song.read_bytes()

    def test_compact_dsf_image(self, make_container):
        song = make_container("song.dsf", b"\x01" * 4, load_address=0x1FFF00, xsf_format=DSF)
        table = load_title(song, compact=True)
        assert table.image_header_value() == 0x1FFF00

    def test_crc_warning_recorded(self, make_container):
        song = make_container("song.ssf", b"\x01" * 4, crc=1)
        table = load_title(song)
        assert any("Wrong CRC" in d.message for d in table.diagnostics)

    def test_payload_past_image_truncated_with_warning(self, make_container):
        song = make_container("song.ssf", b"\x01" * 0x20, load_address=0x7FFF0)
        table = load_title(song)
        assert table.primary().size == 0x10
        assert any("truncated" in d.message for d in table.diagnostics)

    def test_normalized_entries_inside_image(self, make_container):
        make_container("lib.ssflib", b"\x11" * 0x30, load_address=0x400)
        song = make_container("song.minissf", b"\x22" * 0x10, load_address=0x380, tags="_lib=lib.ssflib")
        table = load_title(song)
        for entry in table.entries:
            assert 0 <= entry.start <= entry.end <= len(table.image)
        assert table.image_header_value() == 0x380
