"""Save a FormatTable in one of the three on-disk modes.

WHY: After loading (and possibly minimizing or re-tagging) a title, the
CLI and the archive unpacker need to write it back as a raw RAM image, as
one self-contained container, or as a miniXSF chain.

HOW: save_table() switches on the binary type:
  BIN     — the normalized image as-is (header included)
  XSF     — one container holding the whole image; library references
            are stripped because everything is merged
  MINIXSF — every modified entry as its own container
Default output names come from the primary entry's path.

RULES:
- Returns the number of files written; failures are logged, not raised
- autoname picks the mode from the first output name's extension
- overwrite=False never replaces an existing file
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional

from xsf_converter.core.codec import PathLike, save_container
from xsf_converter.core.ir import BinaryType, ContainerEntry, FormatTable
from xsf_converter.core.tags import rewrite_tags
from xsf_converter.formats import FORMATS

logger = logging.getLogger(__name__)


def binary_type_for_name(name: PathLike) -> Optional[BinaryType]:
    """Infer the output mode from a file name's extension."""
    lower = str(name).lower()
    if any(lower.endswith(fmt.mini_extension) for fmt in FORMATS.values()):
        return BinaryType.MINIXSF
    if lower.endswith("bin"):
        return BinaryType.BIN
    if lower.endswith("sf"):
        return BinaryType.XSF
    return None


def _reference_entry(table: FormatTable) -> ContainerEntry:
    idx = table.primary_index()
    if idx is None:
        if not table.entries:
            raise ValueError("Cannot save a table without entries")
        return table.entries[-1]
    return table.entries[idx]


def default_output_path(table: FormatTable, extension: str) -> Path:
    source = Path(_reference_entry(table).path)
    return source.with_name(source.stem + extension)


def merged_entry(table: FormatTable, index: Optional[int] = None, encoding: Optional[str] = None) -> ContainerEntry:
    """Entry describing the whole image as one container, without _lib tags."""
    entry = table.entries[index] if index is not None else _reference_entry(table)
    hs = table.header_size
    out_encoding = encoding or entry.tag_encoding
    return replace(
        entry,
        header=bytes(table.image[:hs]),
        start=hs,
        end=len(table.image),
        tags=rewrite_tags(entry.tags, entry.tag_encoding, out_encoding=out_encoding),
        tag_encoding=out_encoding,
        modified=True,
    )


def _targets(names: Iterable[PathLike]) -> List[Optional[str]]:
    return [str(n) if n else None for n in names]


def _mode(table: FormatTable, names: Iterable[PathLike], autoname: bool) -> BinaryType:
    targets = _targets(names)
    if autoname and targets and targets[0]:
        return binary_type_for_name(targets[0]) or table.binary_type
    return table.binary_type


def output_paths(
    table: FormatTable,
    names: Iterable[PathLike] = (),
    autoname: bool = False,
) -> List[Path]:
    """Files save_table() would write for the same arguments."""
    targets = _targets(names)
    mode = _mode(table, targets, autoname)
    if mode is BinaryType.BIN or mode is BinaryType.XSF:
        if targets and targets[0]:
            return [Path(targets[0])]
        fmt = table.xsf_format
        return [default_output_path(table, fmt.bin_extension if mode is BinaryType.BIN else fmt.xsf_extension)]
    if mode is BinaryType.MINIXSF:
        modified = [entry for entry in table.entries if entry.modified]
        return [
            Path(targets[i] if i < len(targets) and targets[i] else entry.path)
            for i, entry in enumerate(modified)
        ]
    return []


def _may_write(path: Path, overwrite: bool) -> bool:
    if not overwrite and path.exists():
        logger.info("Skipping existing file %s", path)
        return False
    return True


def save_table(
    table: FormatTable,
    names: Iterable[PathLike] = (),
    index: Optional[int] = None,
    encoding: Optional[str] = None,
    overwrite: bool = True,
    autoname: bool = False,
) -> int:
    """Write a table to disk.

    Args:
        table: Loaded table.
        names: Output paths. BIN/XSF use the first; MINIXSF matches them
               to modified entries in order, falling back to entry paths.
        index: Entry whose tags/reserved area an XSF output inherits
               (defaults to the primary).
        encoding: Output tag encoding for XSF mode.
        overwrite: Replace existing files.
        autoname: Choose the mode from the first name's extension.

    Returns:
        Number of files written.
    """
    names = list(names)
    mode = _mode(table, names, autoname)
    outputs = output_paths(table, names, autoname)

    if mode is BinaryType.BIN:
        out = outputs[0]
        if not _may_write(out, overwrite):
            return 0
        try:
            out.write_bytes(bytes(table.image))
        except OSError as e:
            logger.error("Error saving file %s: %s", out, e)
            return 0
        return 1

    if mode is BinaryType.XSF:
        out = outputs[0]
        entry = merged_entry(table, index, encoding)
        if not _may_write(out, overwrite):
            return 0
        if not save_container(table, entry, out):
            logger.error("Error saving xSF file %s", out)
            return 0
        return 1

    if mode is BinaryType.MINIXSF:
        written = 0
        modified = [entry for entry in table.entries if entry.modified]
        for entry, out in zip(modified, outputs):
            if not _may_write(out, overwrite):
                continue
            if save_container(table, entry, out):
                written += 1
        return written

    logger.error("Cannot save a table with binary type %s", mode.value)
    return 0
