"""Build the item list for packing a directory into a VFS archive.

WHY: A rip directory holds titles that share libraries. In an archive
each distinct file (title or library) should be stored once, and each
title becomes a small group record listing its members.

HOW: For every matching file the library chain is resolved without
loading payloads (cheap). Each member of the chain is then loaded on its
own to get its byte slice and content hash. Members already seen (same
hash, or same path without hashing) reuse the earlier slice item. The
result is all slice items first, then one group item per title, then
the optional direct files (MOD/VGM/MDX).

RULES:
- Slice items store the member's console load address as their type tag
- Group libs end with the negated position of the primary member
- A file that cannot be read is skipped with an error diagnostic
- Direct files are only collected for SSF (or when no family is chosen)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from xsf_converter.archive.models import ArchiveItem
from xsf_converter.config import DIRECT_FILE_TYPES, DRIVER_DISPLAY_NAME, DRIVER_FILENAME, DRIVER_TYPE
from xsf_converter.core.codec import PathLike
from xsf_converter.core.diagnostics import ERROR, Diagnostic
from xsf_converter.core.ir import ContainerEntry, FormatTable
from xsf_converter.core.resolver import load_title
from xsf_converter.core.tags import find_title
from xsf_converter.formats import SSF
from xsf_converter.formats.base import XsfFormat

logger = logging.getLogger(__name__)


@dataclass
class CollectResult:
    items: List[ArchiveItem] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(d.severity == ERROR for d in self.diagnostics)


def _matches(path: Path, xsf_format: Optional[XsfFormat]) -> bool:
    name = path.name.lower()
    if xsf_format is None:
        return name.endswith("sf") or name.endswith("sfbin")
    return name.endswith((xsf_format.xsf_extension, xsf_format.mini_extension, xsf_format.bin_extension))


def _member_item(member: ContainerEntry, table: FormatTable) -> ArchiveItem:
    return ArchiveItem(
        name=Path(member.path).name,
        type_tag=table.xsf_format.absolute_address(member.header),
        source=member.path,
        file_start=member.start,
        file_end=member.end,
        skip_libraries=True,
    )


def collect_archive_items(
    directory: PathLike,
    xsf_format: Optional[XsfFormat] = None,
    encoding: Optional[str] = None,
    use_hash: bool = True,
    add_direct_files: bool = True,
) -> CollectResult:
    """Walk a directory and build the items to pack.

    Args:
        directory: Root directory, searched recursively.
        xsf_format: Only collect this family's files (None: any *sf).
        encoding: Tag encoding (detected when None).
        use_hash: Dedup members by content hash instead of path.
        add_direct_files: Also pack vgm68.bin, *.mod, *.vgm, *.mdx.

    Returns:
        CollectResult with items in archive order.
    """
    root = Path(directory)
    result = CollectResult()
    slices: List[ArchiveItem] = []
    groups: List[ArchiveItem] = []
    seen: Dict[str, int] = {}

    for path in sorted(p for p in root.rglob("*") if p.is_file() and _matches(p, xsf_format)):
        logger.info("Loading %s", path.resolve())
        try:
            table = load_title(path, xsf_format=xsf_format, encoding=encoding, load_payload=False)
            libs: List[int] = []
            primary = 0
            name = ""
            for position, entry in enumerate(table.entries):
                member_table = load_title(
                    entry.path, xsf_format=table.xsf_format, encoding=encoding,
                    load_libraries=False, compute_hash=use_hash,
                )
                member = member_table.entries[0]
                key = member.content_hash if use_hash and member.content_hash else member.path
                if key not in seen:
                    seen[key] = len(slices)
                    slices.append(_member_item(member, member_table))
                libs.append(seen[key])
                if not entry.is_library:
                    primary = position
                    name = find_title(entry.path, entry.tags, entry.tag_encoding)
            if libs and name:
                libs.append(-primary)
                groups.append(ArchiveItem(name=name, type_tag=table.xsf_format.group_tag, libs=libs))
        except Exception as e:
            logger.exception("Failed to collect %s", path)
            result.diagnostics.append(Diagnostic(str(path), str(e), ERROR))

    if add_direct_files and (xsf_format is None or xsf_format is SSF):
        for path in sorted(root.rglob(DRIVER_FILENAME)):
            slices.append(ArchiveItem(
                name=DRIVER_DISPLAY_NAME,
                type_tag=DRIVER_TYPE,
                source=str(path.resolve()),
                load_direct=True,
            ))
        for type_tag, extension in DIRECT_FILE_TYPES.items():
            if type_tag == DRIVER_TYPE:
                continue
            for path in sorted(root.rglob("*" + extension)):
                groups.append(ArchiveItem(
                    name=path.stem,
                    type_tag=type_tag,
                    source=str(path.resolve()),
                    load_direct=True,
                ))

    result.items = slices + groups
    return result
