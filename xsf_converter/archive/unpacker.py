"""Extract a VFS archive back into individual files.

WHY: Archives store each library once and each title as a group that
points at its members. Getting playable files back means rebuilding each
group as a table with a proper _lib chain, and writing everything else
(drivers, sequences, MOD/VGM/MDX) out as plain files.

HOW: Two passes over the directory.
  Pass 1 (merge_groups): for every SSF/DSF group record, read the member
    indices and the primary position, place every member slice at its
    load address (the slice record's type tag) in a fresh image in the
    order the resolver loads them (later members win overlaps), give
    each member a header and a synthesized _lib/_libN tag block, then
    save the table with save_table(). Members and the group are marked
    extracted.
  Pass 2: every record not yet extracted is written raw as
    <record name><extension for its type tag>.

Tag chain for a group whose members are m0..mn with primary at p:
    m0             no library tags
    m1..m(p-1)     _lib=<previous member>
    mp             _lib=<previous member>, _lib2=<m(p+1)>, _lib3=...
    m(p+1)..mn     no library tags

RULES:
- A bad magic or a truncated directory raises ArchiveFormatError
- Any other per-record failure becomes an error diagnostic; the
  remaining records are still processed
- output_names are consumed in order across both passes
- Record names are made safe as file names (path separators replaced)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

from xsf_converter.archive.models import (
    ARCHIVE_MAGIC,
    HEADER_SIZE,
    RECORD_SIZE,
    ArchiveRecord,
    decode_name,
    parse_group_payload,
    unpack_header,
)
from xsf_converter.config import ARCHIVE_NAME_ENCODING, ARCHIVE_TAG_ENCODING, lookup_encoding, raw_extension
from xsf_converter.core.codec import PathLike
from xsf_converter.core.diagnostics import BatchResult
from xsf_converter.core.export import binary_type_for_name, output_paths, save_table
from xsf_converter.core.ir import BinaryType, ContainerEntry, FormatTable
from xsf_converter.core.tags import TAG_MARKER
from xsf_converter.formats import format_for_group_tag
from xsf_converter.formats.base import XsfFormat

logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


class ArchiveFormatError(ValueError):
    """Raised when a file is not a readable VFS archive."""


def safe_name(name: str) -> str:
    cleaned = _UNSAFE_NAME.sub("_", name).strip()
    return cleaned or "unnamed"


class _NameSource:
    """Hands out caller-supplied output names in order, then defaults."""

    def __init__(self, names: Sequence[PathLike]) -> None:
        self._names = [str(n) for n in names]
        self._used = 0

    def next(self, default: str) -> str:
        if self._used < len(self._names):
            name = self._names[self._used]
            self._used += 1
            return name
        return default


def read_directory(data: bytes, path: PathLike = "") -> List[ArchiveRecord]:
    """Parse the header and records of an archive held in memory."""
    if len(data) < HEADER_SIZE:
        raise ArchiveFormatError("{}: file is too short for a VFS header".format(path))
    magic, count, _ = unpack_header(data)
    if magic != ARCHIVE_MAGIC:
        raise ArchiveFormatError("{}: not a valid VFS file (magic {:#010x})".format(path, magic))
    if count < 0 or HEADER_SIZE + count * RECORD_SIZE > len(data):
        raise ArchiveFormatError("{}: directory of {} records is truncated".format(path, count))
    return ArchiveRecord.unpack_all(data, count)


def _payload(data: bytes, record: ArchiveRecord) -> bytes:
    end = record.byte_address + record.size
    if record.byte_address < 0 or record.size < 0 or end > len(data):
        raise ValueError(
            "payload [{:#x}, {:#x}) is outside the {:#x}-byte archive".format(
                record.byte_address, end, len(data)
            )
        )
    return data[record.byte_address:end]


def _group_tags(position: int, primary: int, names: List[str], encoding: str) -> bytes:
    if position > primary or (position == 0 and primary != 0):
        return TAG_MARKER
    lines = []
    if position > 0:
        lines.append("_lib=" + Path(names[position - 1]).name)
    if position == primary:
        for k in range(position + 1, len(names)):
            lines.append("_lib{}={}".format(k - position + 1, Path(names[k]).name))
    return TAG_MARKER + "\n".join(lines).encode(encoding, errors="replace")


def build_group_table(
    data: bytes,
    records: List[ArchiveRecord],
    group: ArchiveRecord,
    xsf_format: XsfFormat,
    output_dir: Path,
    names: _NameSource,
    name_encoding: str,
    tag_encoding: str,
) -> tuple:
    """Rebuild one library group as a MINIXSF table.

    Returns:
        (table, member indices).
    """
    members, primary = parse_group_payload(_payload(data, group))
    for index in members:
        if not 0 <= index < len(records):
            raise ValueError("member index {} is outside the directory".format(index))
    member_records = [records[index] for index in members]

    group_name = safe_name(decode_name(group.name, name_encoding))
    file_names: List[str] = []
    for position, record in enumerate(member_records):
        if position == primary:
            default = group_name + xsf_format.mini_extension
        else:
            stem = Path(safe_name(decode_name(record.name, name_encoding))).stem
            default = stem + xsf_format.library_extension
        file_names.append(names.next(default))

    lowest = min(record.type_tag for record in member_records)
    highest = max(record.type_tag + record.size for record in member_records)
    if highest - lowest > xsf_format.image_size:
        raise ValueError(
            "members span {:#x} bytes, more than a {} image holds".format(highest - lowest, xsf_format.name)
        )
    hs = xsf_format.header_size
    image = bytearray(highest - lowest + hs)
    image[:hs] = xsf_format.encode_header(lowest, subtract_base=True)
    table = FormatTable(BinaryType.MINIXSF, xsf_format, image)

    # Members are copied in load order: main chain, primary, then _libN.
    for record in member_records:
        start = record.type_tag - lowest + hs
        image[start:start + record.size] = _payload(data, record)

    for position, record in enumerate(member_records):
        start = record.type_tag - lowest + hs
        table.add_entry(ContainerEntry(
            path=str(output_dir / file_names[position]),
            header=xsf_format.encode_header(record.type_tag, subtract_base=True),
            start=start,
            end=start + record.size,
            tags=_group_tags(position, primary, file_names, tag_encoding),
            tag_encoding=tag_encoding,
            is_library=position != primary,
            modified=True,
        ))
    return table, members


def extract_archive(
    path: PathLike,
    output_dir: Optional[PathLike] = None,
    binary_type: BinaryType = BinaryType.MINIXSF,
    output_names: Sequence[PathLike] = (),
    name_encoding: str = ARCHIVE_NAME_ENCODING,
    tag_encoding: str = ARCHIVE_TAG_ENCODING,
    merge_groups: bool = True,
    overwrite: bool = True,
) -> BatchResult:
    """Extract every record of a VFS archive.

    Args:
        path: Archive to read.
        output_dir: Destination directory (default: the archive's).
        binary_type: How groups are saved: MINIXSF chain, merged XSF,
                     raw BIN, or ANY to pick from the output name.
        output_names: Output file names, consumed in order.
        name_encoding: Encoding of record names.
        tag_encoding: Encoding of synthesized tags.
        merge_groups: Rebuild groups; False writes every record raw.
        overwrite: Replace existing files.

    Raises:
        ArchiveFormatError: Not a VFS archive.
    """
    path = Path(path)
    out_dir = Path(output_dir) if output_dir is not None else path.parent
    out_dir.mkdir(parents=True, exist_ok=True)
    tag_encoding = lookup_encoding(tag_encoding)
    data = path.read_bytes()
    records = read_directory(data, path)
    names = _NameSource(output_names)
    extracted = [False] * len(records)
    result = BatchResult()

    if merge_groups:
        for i, record in enumerate(records):
            xsf_format = format_for_group_tag(record.type_tag)
            if xsf_format is None or extracted[i]:
                continue
            extracted[i] = True
            try:
                table, members = build_group_table(
                    data, records, record, xsf_format, out_dir, names, name_encoding, tag_encoding
                )
                for index in members:
                    extracted[index] = True
                if binary_type is BinaryType.ANY:
                    table.binary_type = binary_type_for_name(table.primary().path) or BinaryType.MINIXSF
                else:
                    table.binary_type = binary_type
                targets = [p for p in output_paths(table) if overwrite or not p.exists()]
                if save_table(table, overwrite=overwrite) < len(targets):
                    result.fail(decode_name(record.name, name_encoding), "not every file was written", index=i)
                result.written.extend(str(p) for p in targets if p.exists())
            except Exception as e:
                logger.exception("Error processing archive record %d", i)
                result.fail(decode_name(record.name, name_encoding), str(e), index=i)

    for i, record in enumerate(records):
        if extracted[i]:
            continue
        name = decode_name(record.name, name_encoding)
        try:
            target = out_dir / names.next(safe_name(name) + raw_extension(record.type_tag))
            payload = _payload(data, record)
            if not overwrite and target.exists():
                logger.info("Skipping existing file %s", target)
            else:
                target.write_bytes(payload)
                result.written.append(str(target))
            extracted[i] = True
        except Exception as e:
            logger.exception("Error extracting archive record %d", i)
            result.fail(name, str(e), index=i)
    return result

