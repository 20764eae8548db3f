"""Intermediate representation for loaded xSF titles.

WHY: A playable xSF title is a primary file plus any number of library
files, all writing into one console address space. Every operation —
tagging, converting, minimizing, archiving — needs the same flat view of
that address space plus per-file bookkeeping (where each file's bytes
live, its header, its tags). The IR gives all stages one shape to share.

HOW: Three pieces:
  BinaryType     — how a table is stored on disk (raw image, one merged
                   container, or a miniXSF chain)
  ContainerEntry — one container file: header, [start, end) span inside
                   the shared image, CRC, reserved area, raw tags
  FormatTable    — the shared image buffer plus its ordered entries

RULES:
- A FormatTable exclusively owns its image; nothing else holds a reference
- Entries are addressed by index; replace them with replace_entry() rather
  than mutating copies
- At most one non-library entry per table (the primary title)
- After normalization every entry satisfies 0 <= start <= end <= len(image)
- tags are raw bytes including the "[TAG]" marker; tag_encoding names the
  codec used to read them
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

from xsf_converter.core.diagnostics import Diagnostic
from xsf_converter.formats.base import XsfFormat


class BinaryType(enum.Enum):
    """On-disk storage mode of a FormatTable."""

    ANY = "any"
    BIN = "bin"
    XSF = "xsf"
    MINIXSF = "minixsf"


@dataclass
class ContainerEntry:
    """One container file (title or library) inside a FormatTable.

    WHY: The shared image forgets which file contributed which bytes.
    Saving, minimizing and archiving need that mapping back.

    RULES:
    - start / end: offsets into the owning table's image, end exclusive
    - header: exactly xsf_format.header_size bytes for loaded containers
    - crc: CRC32 of the compressed block as stored (0 for BIN input)
    - reserved: opaque reserved-area bytes, written back verbatim
    - content_hash: MD5 hex of the decompressed block, only when requested
    """

    path: str
    header: bytes = b""
    start: int = 0
    end: int = 0
    crc: int = 0
    reserved: bytes = b""
    tags: bytes = b""
    tag_encoding: str = "utf-8"
    is_library: bool = False
    modified: bool = False
    content_hash: Optional[str] = None

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass
class FormatTable:
    """A title's shared console image and the entries that fill it.

    WHY: Library chains overlap in one address space. Loading them into a
    single buffer in dependency order yields the bytes the console would
    actually see, which is what conversion and minimization compare.

    HOW: Built by the resolver (core.resolver.load_title), rebased by the
    normalizer, read by the minimizer and archive packer.

    RULES:
    - entries: libraries in load order; the primary is the single
      non-library entry
    - diagnostics: non-fatal warnings collected while loading
    """

    binary_type: BinaryType
    xsf_format: XsfFormat
    image: bytearray
    entries: List[ContainerEntry] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def header_size(self) -> int:
        return self.xsf_format.header_size

    def add_entry(self, entry: ContainerEntry) -> int:
        """Append an entry and return its index.

        Raises:
            ValueError: If a second non-library entry is added.
        """
        if not entry.is_library and self.primary_index() is not None:
            raise ValueError(
                "Table already has a primary entry; {} must be a library".format(entry.path)
            )
        self.entries.append(entry)
        return len(self.entries) - 1

    def primary_index(self) -> Optional[int]:
        """Index of the last non-library entry, or None."""
        for idx in range(len(self.entries) - 1, -1, -1):
            if not self.entries[idx].is_library:
                return idx
        return None

    def primary(self) -> ContainerEntry:
        idx = self.primary_index()
        if idx is None:
            raise ValueError("No non-library entry found in the table")
        return self.entries[idx]

    def replace_entry(self, index: int, entry: ContainerEntry) -> None:
        if not entry.is_library:
            current = self.primary_index()
            if current is not None and current != index:
                raise ValueError("Table already has a primary entry at index {}".format(current))
        self.entries[index] = entry

    def image_header_value(self) -> int:
        """Load address encoded in the image's own header field."""
        return self.xsf_format.header_value(bytes(self.image[:self.header_size]))
