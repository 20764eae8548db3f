"""VFS archive data structures.

WHY: A VFS archive bundles many titles, their shared libraries and some
passthrough files (drivers, MOD/VGM/MDX) into one sector-aligned image a
player can index without parsing each payload. The packer, unpacker and
manifest code all need the same picture of a directory record and of a
logical item waiting to be packed.

HOW:
  ArchiveRecord — one on-disk 84-byte directory record
  ArchiveItem   — one logical entry to pack (also a manifest row)

Layout:
    magic(4) | count(4) | first_data_sector(4)
    | record[count] | zero pad to 2048 | payloads, each padded to 2048

RULES:
- All integers little-endian; sizes and addresses signed 32-bit, the type
  tag unsigned
- Names are at most 63 encoded bytes, zero padded to 64
- A group item's libs are member indices followed by the negated
  position of the primary member within that list
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Optional

ARCHIVE_MAGIC = 0x00534656  # "VFS\0"
SECTOR_SIZE = 2048
NAME_SIZE = 64

_HEADER = struct.Struct("<I2i")
_RECORD = struct.Struct("<{}s4iI".format(NAME_SIZE))
HEADER_SIZE = _HEADER.size  # 12
RECORD_SIZE = _RECORD.size  # 84

DIRECT = "direct"
SLICE = "slice"
GROUP = "group"


def sector_padding(size: int) -> int:
    """Zero bytes needed to extend size to a sector boundary."""
    remainder = size % SECTOR_SIZE
    return 0 if remainder == 0 else SECTOR_SIZE - remainder


def directory_size(count: int) -> int:
    """Bytes taken by the header and records, padded to a sector."""
    size = HEADER_SIZE + count * RECORD_SIZE
    return size + sector_padding(size)


def pack_header(count: int) -> bytes:
    return _HEADER.pack(ARCHIVE_MAGIC, count, directory_size(count) // SECTOR_SIZE)


def unpack_header(data: bytes) -> tuple:
    """Return (magic, count, first_data_sector)."""
    return _HEADER.unpack(data[:HEADER_SIZE])


def encode_name(name: str, encoding: str) -> bytes:
    """Encode a record name, truncated so a terminating zero always fits."""
    return name.encode(encoding, errors="replace")[:NAME_SIZE - 1]


def decode_name(raw: bytes, encoding: str) -> str:
    return raw.split(b"\x00", 1)[0].decode(encoding, errors="replace")


@dataclass
class ArchiveRecord:
    """One directory record.

    Attributes:
        name: Encoded name bytes (without padding).
        size: Payload size in bytes.
        start_sector: byte_address // SECTOR_SIZE.
        padded_sectors: Sectors taken by the padded payload.
        byte_address: Absolute offset of the payload in the archive.
        type_tag: Kind marker; for program slices, the slice's console
                  load address.
    """

    name: bytes
    size: int
    start_sector: int
    padded_sectors: int
    byte_address: int
    type_tag: int

    def pack(self) -> bytes:
        return _RECORD.pack(
            self.name, self.size, self.start_sector,
            self.padded_sectors, self.byte_address, self.type_tag,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "ArchiveRecord":
        name, size, start_sector, padded_sectors, byte_address, type_tag = _RECORD.unpack(
            data[:RECORD_SIZE]
        )
        return cls(name.split(b"\x00", 1)[0], size, start_sector, padded_sectors, byte_address, type_tag)

    @classmethod
    def unpack_all(cls, data: bytes, count: int) -> List["ArchiveRecord"]:
        return [
            cls.unpack(data[HEADER_SIZE + i * RECORD_SIZE:HEADER_SIZE + (i + 1) * RECORD_SIZE])
            for i in range(count)
        ]


@dataclass
class ArchiveItem:
    """A logical entry to pack.

    The payload is chosen by the fields:
      load_direct  — the bytes of source as-is
      libs         — a library group (index list)
      otherwise    — image[file_start:file_end] of source's loaded title
    """

    name: str
    type_tag: int
    source: Optional[str] = None
    load_direct: bool = False
    file_start: int = 0
    file_end: int = 0
    skip_libraries: bool = False
    libs: List[int] = field(default_factory=list)

    @property
    def kind(self) -> str:
        if self.load_direct:
            return DIRECT
        if self.libs:
            return GROUP
        return SLICE

    @property
    def members(self) -> List[int]:
        """Archive indices referenced by a group, primary included."""
        return list(self.libs[:-1])

    @property
    def primary_position(self) -> int:
        """Position of the primary inside members."""
        return -self.libs[-1]

    def group_payload(self) -> bytes:
        return struct.pack("<{}i".format(len(self.libs)), *self.libs)


def parse_group_payload(data: bytes) -> tuple:
    """Decode a group payload into (member indices, primary position)."""
    if len(data) < 4 or len(data) % 4:
        raise ValueError("Library group payload of {} bytes is not an index list".format(len(data)))
    values = struct.unpack("<{}i".format(len(data) // 4), data)
    members = list(values[:-1])
    primary = -values[-1]
    if not members or not 0 <= primary < len(members):
        raise ValueError("Library group primary position {} is out of range".format(primary))
    return members, primary
