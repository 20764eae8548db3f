"""Shared test fixtures for the xsf_converter test suite.

WHY: Almost every test needs small, fully controlled container files and
tables. Real rips are megabytes of copyrighted data; synthetic files
built byte by byte keep the tests fast and make every offset obvious.

HOW: write_container() lays out a container exactly as described in the
codec docstring, independently of the code under test. The make_container
fixture binds it to tmp_path; make_table builds an in-memory normalized
FormatTable without touching disk.

RULES:
- Containers are compressed at level 9 so a load/save round trip is
  byte-identical
- Tags are plain ASCII unless a test says otherwise
- Load addresses are header values (without the console base)
"""

import struct
import zlib
from pathlib import Path

import pytest

from xsf_converter.core.ir import BinaryType, ContainerEntry, FormatTable
from xsf_converter.formats import SSF


def container_bytes(program, load_address=0, tags=None, xsf_format=SSF, reserved=b"", crc=None):
    block = struct.pack("<I", load_address) + bytes(program)
    compressed = zlib.compress(block, 9)
    if crc is None:
        crc = zlib.crc32(compressed) & 0xFFFFFFFF
    data = struct.pack("<4I", xsf_format.magic, len(reserved), len(compressed), crc)
    data += reserved + compressed
    if tags is not None:
        data += b"[TAG]" + tags.encode("utf-8")
    return data


def write_container(path, program, load_address=0, tags=None, xsf_format=SSF, reserved=b"", crc=None):
    path = Path(path)
    path.write_bytes(container_bytes(program, load_address, tags, xsf_format, reserved, crc))
    return path


@pytest.fixture
def make_container(tmp_path):
    """Write a container under tmp_path and return its path."""

    def _make(name, program, load_address=0, tags=None, xsf_format=SSF, reserved=b"", crc=None):
        return write_container(tmp_path / name, program, load_address, tags, xsf_format, reserved, crc)

    return _make


@pytest.fixture
def make_table():
    """Build a normalized single-title table from a load address and program."""

    def _make(program, load_address=0, path="song.ssf", tags=b"[TAG]title=Song", xsf_format=SSF):
        hs = xsf_format.header_size
        header = struct.pack("<I", load_address)
        image = bytearray(header + bytes(program))
        entry = ContainerEntry(
            path=path,
            header=header,
            start=hs,
            end=len(image),
            tags=tags,
        )
        return FormatTable(BinaryType.MINIXSF, xsf_format, image, [entry])

    return _make
