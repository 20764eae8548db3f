"""Delta minimization: shrink a full program image to what its library lacks.

WHY: Sound rips share one large driver/sample library across dozens of
tracks. Each track only needs the bytes that differ from that library;
storing just those (a miniXSF with _lib=<library>) saves most of the space.

HOW: create_minixsf() aligns both normalized images on the console
address space (header value + format base), forces the regions the
library cannot cover (program head before the library, tail after it),
and byte-compares the overlap. Equal 2 KB chunks are skipped with one
comparison; only unequal chunks are scanned byte by byte. The changed
window is padded and turned into a new primary entry.

Optionally a "corrected" library buffer is filled in: bytes where the
program agrees with the library, plus the library's untouched head and
tail. It contains what a library built from these programs would need.

minimize_directory() runs this for every program in a directory against
one library, the way rippers batch-minimize a set.

RULES:
- Both tables must be normalized and of the same family
- Coordinates: change_start / change_end are program-image offsets
- Padding < 1 means the family's header size
- A negative span or out-of-range slice raises MinimizeError, never wraps
- The input entries are never mutated; a new entry is returned
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Tuple

from xsf_converter.config import lookup_encoding
from xsf_converter.core.codec import PathLike
from xsf_converter.core.diagnostics import BatchResult
from xsf_converter.core.export import save_table
from xsf_converter.core.ir import BinaryType, ContainerEntry, FormatTable
from xsf_converter.core.resolver import load_title
from xsf_converter.core.tags import rewrite_tags

logger = logging.getLogger(__name__)

_U32_MAX = 0xFFFFFFFF
_COMPARE_CHUNK = 2048
_NONZERO_RUN = re.compile(rb"[^\x00]+")


class MinimizeError(ValueError):
    """Raised when two tables cannot be minimized against each other."""


@dataclass
class MinimizeResult:
    """Outcome of one minimization.

    Attributes:
        entry: New primary entry for the program table (not yet inserted).
        change_start: First changed program-image offset, before padding
                      (None when nothing differs).
        change_end: End of the changed window, before padding.
        differences: Number of differing bytes in the overlap.
        nonzero_matches: Non-zero library bytes the program agrees with.
        lib_base: Library-image offset aligned with psf_base.
        psf_base: Program-image offset aligned with lib_base.
    """

    entry: ContainerEntry
    change_start: Optional[int]
    change_end: Optional[int]
    differences: int
    nonzero_matches: int
    lib_base: int
    psf_base: int

    @property
    def changed(self) -> bool:
        return self.entry.end > self.entry.start


def padding_to(value: int, granularity: int) -> int:
    """Bytes needed to round value up to a multiple of granularity."""
    remainder = value % granularity
    return 0 if remainder == 0 else granularity - remainder


def _absolute_address(table: FormatTable) -> int:
    address = table.image_header_value() + table.xsf_format.base_address
    if address > _U32_MAX:
        raise MinimizeError(
            "Load address {:#x} of {} is outside the 32-bit range".format(
                address, table.xsf_format.name
            )
        )
    return address


def _copy_runs(corrected: bytearray, chunk: bytes, offset: int) -> None:
    """Write the non-zero runs of chunk into corrected at offset."""
    limit = len(corrected)
    for match in _NONZERO_RUN.finditer(chunk):
        start = offset + match.start()
        if start >= limit:
            return
        end = min(offset + match.end(), limit)
        corrected[start:end] = chunk[match.start():match.start() + end - start]


def _compare(
    lib_image: bytearray,
    psf_image: bytearray,
    lib_base: int,
    psf_base: int,
    corrected: Optional[bytearray],
) -> Tuple[Optional[int], Optional[int], int, int]:
    """Compare the aligned overlap.

    Returns:
        (first differing psf offset, last differing psf offset + 1,
         difference count, non-zero match count).
    """
    length = min(len(lib_image) - lib_base, len(psf_image) - psf_base)
    first: Optional[int] = None
    last: Optional[int] = None
    differences = 0
    nonzero = 0

    for offset in range(0, max(length, 0), _COMPARE_CHUNK):
        size = min(_COMPARE_CHUNK, length - offset)
        lib_chunk = bytes(lib_image[lib_base + offset:lib_base + offset + size])
        psf_chunk = bytes(psf_image[psf_base + offset:psf_base + offset + size])
        if lib_chunk == psf_chunk:
            nonzero += size - lib_chunk.count(0)
            if corrected is not None:
                _copy_runs(corrected, lib_chunk, lib_base + offset)
            continue
        for j in range(size):
            value = lib_chunk[j]
            if value != psf_chunk[j]:
                differences += 1
                position = psf_base + offset + j
                if first is None:
                    first = position
                last = position + 1
            elif value:
                nonzero += 1
                target = lib_base + offset + j
                if corrected is not None and target < len(corrected):
                    corrected[target] = value
    return first, last, differences, nonzero


def _copy_untouched(
    corrected: bytearray,
    lib_image: bytearray,
    change_start: Optional[int],
    change_end: Optional[int],
    lib_base: int,
    psf_base: int,
) -> None:
    """Copy the library's head and tail around the changed window."""
    usable = min(len(corrected), len(lib_image))
    if change_start is None and change_end is None:
        corrected[:usable] = lib_image[:usable]
        return
    if change_start is not None:
        head = change_start - psf_base + lib_base
        if head < 0:
            raise MinimizeError("Library head length {} is negative".format(head))
        head = min(head, usable)
        corrected[:head] = lib_image[:head]
    if change_end is not None:
        tail = change_end - psf_base + lib_base
        if tail < 0:
            raise MinimizeError("Library tail offset {} is negative".format(tail))
        if tail < usable:
            corrected[tail:usable] = lib_image[tail:usable]


def create_minixsf(
    lib: FormatTable,
    psf: FormatTable,
    start_padding: int = 0,
    end_padding: int = 0,
    corrected_lib: Optional[bytearray] = None,
    keep_unchanged: bool = True,
    library_name: Optional[str] = None,
    out_encoding: Optional[str] = None,
) -> MinimizeResult:
    """Compute the minimized primary entry of psf against lib.

    Args:
        lib: Normalized library table.
        psf: Normalized full program table (primary entry required).
        start_padding: Alignment the window start is rounded down to.
        end_padding: Alignment the window end is rounded up to.
        corrected_lib: Buffer (normally len(lib.image)) that receives the
                       corrected library bytes; ignored when empty.
        keep_unchanged: Mark a zero-length result as modified so it is
                        still saved.
        library_name: Value for the new _lib= tag; defaults to the file
                      name of lib's primary (or last) entry.
        out_encoding: Encoding for the rewritten tags; defaults to the
                      entry's own.

    Returns:
        MinimizeResult with the new entry for psf.primary_index().

    Raises:
        MinimizeError: Family mismatch or out-of-range arithmetic.
        ValueError: psf has no primary entry.
    """
    if lib.xsf_format is not psf.xsf_format:
        raise MinimizeError(
            "Cannot minimize a {} program against a {} library".format(
                psf.xsf_format.name, lib.xsf_format.name
            )
        )
    if not lib.entries:
        raise MinimizeError("Library table has no entries")
    xsf_format = psf.xsf_format
    k = xsf_format.header_size
    lib_k = lib.header_size
    if start_padding < 1:
        start_padding = lib_k
    if end_padding < 1:
        end_padding = lib_k

    primary = psf.primary()
    lib_addr = _absolute_address(lib)
    psf_addr = _absolute_address(psf)

    change_start: Optional[int] = None
    change_end: Optional[int] = None
    head_forced = tail_forced = False

    if lib_addr <= psf_addr:
        psf_base = k
        lib_base = psf_addr - lib_addr + lib_k
    else:
        lib_base = lib_k
        psf_base = lib_addr - psf_addr + k
        head_forced = True
        # The program bytes in front of the library are all new.
        change_start = lib_k
        change_end = min(psf_base, len(psf.image))

    if len(psf.image) - psf_base > len(lib.image) - lib_base:
        tail_forced = True
        tail_start = max(len(lib.image) - lib_base + psf_base, k)
        change_start = tail_start if change_start is None else min(change_start, tail_start)
        change_end = len(psf.image)

    use_corrected = corrected_lib is not None and len(corrected_lib) > 0
    corrected = corrected_lib if use_corrected else None

    differences = nonzero = 0
    if not (head_forced and tail_forced):
        first, last, differences, nonzero = _compare(
            lib.image, psf.image, lib_base, psf_base, corrected
        )
        if first is not None:
            change_start = first if change_start is None else min(change_start, first)
            change_end = last if change_end is None else max(change_end, last)

    if corrected is not None:
        _copy_untouched(corrected, lib.image, change_start, change_end, lib_base, psf_base)

    if library_name is None:
        lib_idx = lib.primary_index()
        library_name = Path(lib.entries[-1 if lib_idx is None else lib_idx].path).name

    encoding = lookup_encoding(primary.tag_encoding)
    tag_encoding = lookup_encoding(out_encoding) if out_encoding else encoding
    tags = rewrite_tags(
        primary.tags, encoding, ["_lib=" + library_name], out_encoding=tag_encoding
    )

    if change_start is not None and change_end is not None and change_end > change_start:
        new_start = max(change_start - change_start % start_padding, k)
        new_end = min(change_end + padding_to(change_end, end_padding), len(psf.image))
        if new_start < k or new_end < new_start:
            raise MinimizeError(
                "Changed window [{:#x}, {:#x}) is outside the program image".format(
                    new_start, new_end
                )
            )
        try:
            header = xsf_format.encode_header(new_start - k + psf.image_header_value())
        except ValueError as e:
            raise MinimizeError(str(e)) from e
        entry = replace(
            primary,
            header=header,
            start=new_start,
            end=new_end,
            tags=tags,
            tag_encoding=tag_encoding,
            modified=True,
        )
        logger.info(
            "%s: changed [%#x, %#x) -> [%#x, %#x), %d differences, %d non-zero matches",
            primary.path, change_start, change_end, new_start, new_end, differences, nonzero,
        )
    else:
        entry = replace(
            primary,
            start=k,
            end=k,
            tags=tags,
            tag_encoding=tag_encoding,
            modified=keep_unchanged,
        )
        logger.info("%s: identical to the library", primary.path)

    return MinimizeResult(entry, change_start, change_end, differences, nonzero, lib_base, psf_base)


def _is_candidate(path: Path) -> bool:
    name = path.name.lower()
    return path.is_file() and (name.endswith("sf") or name.endswith("sfbin"))


def minimize_directory(
    directory: PathLike,
    library_path: PathLike,
    corrected_library: Optional[str] = None,
    pad_end: bool = False,
    encoding: Optional[str] = None,
    out_encoding: Optional[str] = None,
    backup: bool = True,
) -> BatchResult:
    """Minimize every program in a directory tree against one library.

    WHY: Converting a full rip set to miniXSFs is a batch job; one bad
    file must not stop the rest.

    HOW: The library is loaded once. Every *sf / *sfbin file under the
    directory is loaded, minimized and written next to the original as
    <stem><mini extension>. With backup, the original is renamed to
    <stem>.BAK first. With corrected_library, the corrected library is
    saved as an xSF under that name in the directory, and the new
    miniXSFs reference it instead of the input library.

    Returns:
        BatchResult listing written files; per-file failures are errors.
    """
    root = Path(directory)
    library_path = Path(library_path).resolve()
    result = BatchResult()

    lib = load_title(library_path, encoding=encoding)
    corrected = bytearray(len(lib.image)) if corrected_library else None
    library_name = corrected_library or library_path.name
    end_padding = lib.header_size if pad_end else 1
    skip = {library_path}
    if corrected_library:
        skip.add((root / corrected_library).resolve())

    sizes: List[Tuple[int, str]] = []
    for path in sorted(p for p in root.rglob("*") if _is_candidate(p)):
        if path.resolve() in skip:
            continue
        try:
            psf = load_title(path, encoding=encoding)
            if psf.xsf_format is not lib.xsf_format:
                raise MinimizeError(
                    "{} is a {} title, the library is {}".format(
                        path.name, psf.xsf_format.name, lib.xsf_format.name
                    )
                )
            minimized = create_minixsf(
                lib, psf, 0, end_padding, corrected,
                library_name=library_name, out_encoding=out_encoding,
            )
            psf.replace_entry(psf.primary_index(), minimized.entry)
            psf.binary_type = BinaryType.MINIXSF
            out = path.with_name(path.stem + psf.xsf_format.mini_extension)
            bak = path.with_name(path.stem + ".BAK")
            if backup and bak.exists():
                result.fail(str(path), "backup {} already exists".format(bak.name))
                continue
            if out.exists() and not (backup and out == path):
                result.fail(str(path), "output {} already exists".format(out.name))
                continue
            if backup:
                path.rename(bak)
            if save_table(psf, [out]) != 1:
                result.fail(str(path), "could not write {}".format(out))
                continue
            result.written.append(str(out))
            sizes.append((minimized.entry.size, out.name))
        except Exception as e:
            logger.exception("Failed to minimize %s", path)
            result.fail(str(path), str(e))

    if corrected is not None:
        lib.image = corrected
        lib.binary_type = BinaryType.XSF
        out = root / corrected_library
        if save_table(lib, [out]) == 1:
            result.written.append(str(out))
        else:
            result.fail(str(out), "could not write the corrected library")

    for size, name in sorted(sizes):
        logger.info("%#x\t%s", size, name)
    return result
