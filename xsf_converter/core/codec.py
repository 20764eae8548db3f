"""Single-container codec: read and write one SSF/DSF file.

WHY: Every other stage works on the shared image. The codec is the only
place that knows the on-disk layout, so the resolver can load payloads,
the minimizer's output can be written back, and the archive can peek at
tags cheaply.

HOW: A container is

    magic(4) | reserved_size(4) | compressed_size(4) | crc32(4)
    | reserved[reserved_size] | zlib block | tag block

where the zlib block inflates to [header][program]. Files whose magic is
not a known family are treated as raw BIN dumps. load_container() returns
a LoadedContainer; the program bytes are handed to the resolver, which
decides where they land in the image.

RULES:
- All integers are little-endian u32
- CRC32 covers the compressed bytes only; a mismatch is a warning
- load_payload=False reads tags only (no inflate) for cheap scans
- save_container() compresses at level 9 and writes tags verbatim
- Header width always comes from the XsfFormat
"""

from __future__ import annotations

import hashlib
import logging
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from xsf_converter.core.encoding import EncodingDetector, resolve_encoding
from xsf_converter.core.ir import BinaryType, ContainerEntry, FormatTable
from xsf_converter.formats import format_for_magic, guess_raw_format
from xsf_converter.formats.base import XsfFormat

logger = logging.getLogger(__name__)

_PREAMBLE = struct.Struct("<4I")
PREAMBLE_SIZE = _PREAMBLE.size  # 16 bytes: magic, reserved, compressed, crc

PathLike = Union[str, Path]


class ContainerFormatError(ValueError):
    """Raised when a container is truncated or its zlib block is corrupt.

    RULES:
    - Message names the file and what was wrong
    """


class UnsupportedFormatError(ValueError):
    """Raised for an unknown xSF family, or a raw file where a container is required."""


@dataclass
class ContainerPreamble:
    magic: int
    reserved_size: int
    compressed_size: int
    crc: int

    @property
    def tag_offset(self) -> int:
        return PREAMBLE_SIZE + self.reserved_size + self.compressed_size


@dataclass
class LoadedContainer:
    """Result of reading one file.

    Attributes:
        entry: The ContainerEntry; start/end are absolute image offsets
               (header value + header size) for containers, or
               [header_size, file length) for BIN dumps.
        xsf_format: Family detected from the magic (or the hint).
        binary_type: MINIXSF for containers, BIN for raw dumps.
        program: Program bytes without the header (empty when the payload
                 was not loaded).
        warnings: Non-fatal problems (CRC mismatch, encoding fallback).
    """

    entry: ContainerEntry
    xsf_format: XsfFormat
    binary_type: BinaryType
    program: bytes = b""
    warnings: List[str] = field(default_factory=list)


def _read_preamble(handle: BinaryIO, path: PathLike) -> ContainerPreamble:
    raw = handle.read(PREAMBLE_SIZE)
    if len(raw) < PREAMBLE_SIZE:
        raise ContainerFormatError("{}: file is too short for a container header".format(path))
    return ContainerPreamble(*_PREAMBLE.unpack(raw))


def read_magic(path: PathLike) -> int:
    """Return the first u32 of a file (0 for files shorter than 4 bytes)."""
    with open(path, "rb") as f:
        head = f.read(4)
    if len(head) < 4:
        return 0
    return struct.unpack("<I", head)[0]


def read_tag_block(path: PathLike) -> bytes:
    """Read a container's raw tag bytes without inflating its payload.

    Returns b"" for files that are not recognized containers.
    """
    with open(path, "rb") as f:
        head = f.read(4)
        if len(head) < 4 or format_for_magic(struct.unpack("<I", head)[0]) is None:
            return b""
        f.seek(0)
        preamble = _read_preamble(f, path)
        f.seek(preamble.tag_offset)
        return f.read()


def crc32(data: bytes) -> int:
    return zlib.crc32(data) & 0xFFFFFFFF


def _load_raw(
    path: PathLike,
    xsf_format: Optional[XsfFormat],
    encoding: Optional[str],
) -> LoadedContainer:
    data = Path(path).read_bytes()
    if xsf_format is None:
        first_word = struct.unpack("<I", data[:4])[0] if len(data) >= 4 else 0
        xsf_format = guess_raw_format(first_word)
    hs = xsf_format.header_size
    if len(data) < hs:
        raise ContainerFormatError(
            "{}: raw image is shorter than the {}-byte header".format(path, hs)
        )
    tag_encoding, _ = resolve_encoding(b"", explicit=encoding)
    entry = ContainerEntry(
        path=str(Path(path).resolve()),
        header=data[:hs],
        start=hs,
        end=len(data),
        tag_encoding=tag_encoding,
    )
    return LoadedContainer(entry, xsf_format, BinaryType.BIN, data[hs:])


def load_container(
    path: PathLike,
    xsf_format: Optional[XsfFormat] = None,
    encoding: Optional[str] = None,
    load_payload: bool = True,
    compute_hash: bool = False,
    detector: Optional[EncodingDetector] = None,
    raw: bool = False,
) -> LoadedContainer:
    """Read one container (or raw BIN dump) from disk.

    Args:
        path: File to read.
        xsf_format: Family hint; required to be consistent with the magic
                    for containers, used as-is for BIN dumps.
        encoding: Tag encoding; auto-detected when None.
        load_payload: Inflate the program block. False reads tags only.
        compute_hash: Store an MD5 of the inflated block on the entry.
        detector: Encoding detection service override.
        raw: Treat the file as a BIN dump even if the magic is known.

    Returns:
        LoadedContainer with the entry, the family and the program bytes.

    Raises:
        ContainerFormatError: Truncated file or corrupt zlib block.
        UnsupportedFormatError: Format hint contradicts the magic.
    """
    magic = read_magic(path)
    detected = None if raw else format_for_magic(magic)
    if detected is None:
        return _load_raw(path, xsf_format, encoding)
    if xsf_format is not None and xsf_format is not detected:
        raise UnsupportedFormatError(
            "{}: expected a {} container, found {}".format(path, xsf_format.name, detected.name)
        )
    xsf_format = detected
    hs = xsf_format.header_size
    warnings: List[str] = []

    with open(path, "rb") as f:
        preamble = _read_preamble(f, path)
        reserved = f.read(preamble.reserved_size)
        if load_payload:
            compressed = f.read(preamble.compressed_size)
            if len(compressed) < preamble.compressed_size:
                raise ContainerFormatError("{}: compressed block is truncated".format(path))
        else:
            compressed = b""
            f.seek(preamble.tag_offset)
        tags = f.read()

    tag_encoding, warning = resolve_encoding(tags, explicit=encoding, detector=detector)
    if warning:
        warnings.append(warning)

    entry = ContainerEntry(
        path=str(Path(path).resolve()),
        crc=preamble.crc,
        reserved=reserved,
        tags=tags,
        tag_encoding=tag_encoding,
    )
    program = b""

    if load_payload:
        try:
            block = zlib.decompress(compressed)
        except zlib.error as e:
            raise ContainerFormatError("{}: corrupt compressed block: {}".format(path, e)) from e
        if len(block) < hs:
            raise ContainerFormatError(
                "{}: decompressed block is shorter than the {}-byte header".format(path, hs)
            )
        if crc32(compressed) != preamble.crc:
            warnings.append("Wrong CRC")
        entry.header = block[:hs]
        entry.start = xsf_format.header_value(entry.header) + hs
        entry.end = entry.start + len(block) - hs
        program = block[hs:]
        if compute_hash:
            entry.content_hash = hashlib.md5(block).hexdigest()

    for message in warnings:
        logger.warning("%s: %s", path, message)
    return LoadedContainer(entry, xsf_format, BinaryType.MINIXSF, program, warnings)


def save_container(table: FormatTable, entry: ContainerEntry, out_path: PathLike) -> bool:
    """Write one entry of a table as a container file.

    WHY: The inverse of load_container(). The program bytes come from the
    table's image, so anything the resolver or minimizer did to the image
    or to the entry's span is reflected in the output.

    HOW: Compresses [header][image[start:end]] at level 9, computes the
    CRC32 of the compressed bytes and writes the layout described in the
    module docstring. Tags are written verbatim.

    RULES:
    - Returns False (and logs) on I/O errors or an unknown family magic
    - start == end is valid and writes an empty program region

    Args:
        table: Table owning the image.
        entry: Entry to write; its header is written as-is.
        out_path: Destination file.

    Returns:
        True if the file was written.
    """
    xsf_format = table.xsf_format
    if format_for_magic(xsf_format.magic) is not xsf_format:
        logger.error("Unsupported xSF type %s, cannot save %s", xsf_format.name, out_path)
        return False
    if not 0 <= entry.start <= entry.end <= len(table.image):
        logger.error(
            "Entry span [%d, %d) is outside the %d-byte image, cannot save %s",
            entry.start, entry.end, len(table.image), out_path,
        )
        return False

    block = bytes(entry.header) + bytes(table.image[entry.start:entry.end])
    compressed = zlib.compress(block, 9)
    reserved = entry.reserved or b""
    try:
        with open(out_path, "wb") as f:
            f.write(_PREAMBLE.pack(xsf_format.magic, len(reserved), len(compressed), crc32(compressed)))
            f.write(reserved)
            f.write(compressed)
            f.write(entry.tags or b"")
    except OSError as e:
        logger.error("Error saving file %s: %s", out_path, e)
        return False
    return True
