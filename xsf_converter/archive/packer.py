"""Write a VFS archive from a list of ArchiveItems.

WHY: Players load VFS archives by sector, so every record must know its
final address before any payload is written. Payloads themselves (whole
files, slices of loaded titles) can be large, so they are produced one at
a time while streaming the archive out.

HOW: A first pass computes each item's size (file size, slice length or
4 bytes per group slot) and lays out sector-aligned addresses. The header
and directory are written, then each payload is built, written and padded.

RULES:
- One failing item never aborts the pack: its declared space is zero
  filled and an error diagnostic is recorded
- A payload shorter than declared is zero padded, a longer one truncated
  (both are reported)
- Returns a BatchResult; written holds the archive path on success
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from xsf_converter.archive.models import (
    DIRECT,
    GROUP,
    SECTOR_SIZE,
    ArchiveItem,
    ArchiveRecord,
    directory_size,
    encode_name,
    pack_header,
    sector_padding,
)
from xsf_converter.config import ARCHIVE_NAME_ENCODING, DSF_COMPACT
from xsf_converter.core.codec import PathLike
from xsf_converter.core.diagnostics import BatchResult
from xsf_converter.core.resolver import load_title

logger = logging.getLogger(__name__)


def item_size(item: ArchiveItem) -> int:
    """Payload size an item will occupy."""
    if item.kind == DIRECT:
        if not item.source:
            raise ValueError("Direct item {!r} has no source file".format(item.name))
        return Path(item.source).stat().st_size
    if item.kind == GROUP:
        return 4 * len(item.libs)
    size = item.file_end - item.file_start
    if item.file_start < 0 or size < 0:
        raise ValueError(
            "Item {!r} has an invalid slice [{}, {})".format(item.name, item.file_start, item.file_end)
        )
    return size


def item_payload(item: ArchiveItem, compact: bool = DSF_COMPACT) -> bytes:
    """Build the bytes stored for an item."""
    if item.kind == DIRECT:
        return Path(item.source).read_bytes()
    if item.kind == GROUP:
        return item.group_payload()
    if not item.source:
        raise ValueError("Slice item {!r} has no source file".format(item.name))
    table = load_title(item.source, load_libraries=not item.skip_libraries, compact=compact)
    if item.file_end > len(table.image):
        raise ValueError(
            "Slice [{:#x}, {:#x}) of {} is outside its {:#x}-byte image".format(
                item.file_start, item.file_end, item.source, len(table.image)
            )
        )
    return bytes(table.image[item.file_start:item.file_end])


def layout(
    items: Sequence[ArchiveItem],
    name_encoding: str,
    result: BatchResult,
) -> List[ArchiveRecord]:
    """Compute the directory for items, recording per-item sizing failures."""
    address = directory_size(len(items))
    records: List[ArchiveRecord] = []
    for i, item in enumerate(items):
        try:
            size = item_size(item)
        except (OSError, ValueError) as e:
            logger.error("Cannot size archive item %d (%s): %s", i, item.name, e)
            result.fail(item.name, str(e), index=i)
            size = 0
        padded = size + sector_padding(size)
        records.append(ArchiveRecord(
            name=encode_name(item.name, name_encoding),
            size=size,
            start_sector=address // SECTOR_SIZE,
            padded_sectors=padded // SECTOR_SIZE,
            byte_address=address,
            type_tag=item.type_tag,
        ))
        address += padded
    return records


def pack_archive(
    path: PathLike,
    items: Sequence[ArchiveItem],
    name_encoding: str = ARCHIVE_NAME_ENCODING,
    compact: bool = DSF_COMPACT,
) -> BatchResult:
    """Write items to a VFS archive at path.

    Args:
        path: Output archive.
        items: Items in archive order; group libs index into this list.
        name_encoding: Encoding of record names.
        compact: Load DSF slices with the compact image size.

    Returns:
        BatchResult with per-item diagnostics.

    Raises:
        OSError: The archive file itself cannot be written.
    """
    result = BatchResult()
    records = layout(items, name_encoding, result)
    failed = {d.index for d in result.errors}

    with open(path, "wb") as f:
        f.write(pack_header(len(records)))
        for record in records:
            f.write(record.pack())
        f.write(bytes(directory_size(len(records)) - f.tell()))

        for i, (item, record) in enumerate(zip(items, records)):
            payload = b""
            if i not in failed:
                try:
                    payload = item_payload(item, compact)
                except Exception as e:
                    logger.exception("Failed to pack archive item %d (%s)", i, item.name)
                    result.fail(item.name, str(e), index=i)
            if payload and len(payload) != record.size:
                result.warn(
                    item.name,
                    "payload is {} bytes, {} were reserved".format(len(payload), record.size),
                    index=i,
                )
            payload = payload[:record.size]
            f.write(payload)
            f.write(bytes(record.padded_sectors * SECTOR_SIZE - len(payload)))
            logger.debug("Packed %d %s at %#x (%d bytes)", i, item.name, record.byte_address, record.size)

    result.written.append(str(path))
    return result
