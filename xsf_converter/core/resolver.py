"""Library-chain resolution: load a title and all its _lib dependencies.

WHY: A miniXSF only holds the bytes that differ from its libraries. To
see what the console sees, the whole _lib / _libN graph must be loaded
into one image, in an order where the title's own bytes land last.

HOW: LibraryResolver walks the graph depth-first from the root file:
  1. Peek the root's tag block (no inflate) and resolve the _lib= main
     chain first, so the deepest library loads first
  2. Load the root's own payload into the shared image
  3. Resolve _libN= auxiliaries from the root's tags, ascending by N
Each payload is copied at its absolute address; later copies overwrite
earlier ones. load_title() wraps this, handles raw BIN dumps, and runs
the normalizer afterwards.

RULES:
- Library paths are relative to the referencing file's directory
- A file already on the current resolution path → CyclicLibraryError
- A referenced file that does not exist → MissingLibraryError
- Deeper than MAX_LIBRARY_DEPTH → LibraryResolutionError
- Libraries must be containers of the same family as the root
- Non-fatal warnings (CRC, encoding) land in table.diagnostics
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

from xsf_converter.config import DSF_COMPACT, MAX_LIBRARY_DEPTH
from xsf_converter.core.codec import (
    PathLike,
    UnsupportedFormatError,
    load_container,
    read_magic,
    read_tag_block,
)
from xsf_converter.core.diagnostics import Diagnostic
from xsf_converter.core.encoding import EncodingDetector, resolve_encoding
from xsf_converter.core.ir import BinaryType, FormatTable
from xsf_converter.core.normalizer import normalize
from xsf_converter.core.tags import library_references
from xsf_converter.formats import format_for_magic
from xsf_converter.formats.base import XsfFormat

logger = logging.getLogger(__name__)


class LibraryResolutionError(Exception):
    """Raised when a library chain cannot be resolved.

    WHY: A broken chain is a different failure from an unreadable root
    file. Callers (batch pack, CLI) report it distinctly.
    """


class MissingLibraryError(LibraryResolutionError):
    """Raised when a _lib reference points at a file that does not exist."""

    def __init__(self, library: Path, referenced_by: Path) -> None:
        self.library = library
        self.referenced_by = referenced_by
        super().__init__("Library {} referenced by {} was not found".format(library, referenced_by))


class CyclicLibraryError(LibraryResolutionError):
    """Raised when a _lib chain refers back to a file already being loaded."""

    def __init__(self, chain: Tuple[Path, ...]) -> None:
        self.chain = chain
        super().__init__("Cyclic library reference: {}".format(" -> ".join(str(p) for p in chain)))


class LibraryResolver:
    """Loads one root file and its dependency graph into a table.

    Args:
        table: Target table; its image must be sized to the family's span.
        encoding: Tag encoding for every file; detected per file when None.
        load_libraries: Follow _lib references at all.
        load_payload: Inflate program blocks (False = tags/metadata only).
        compute_hash: Record MD5 content hashes on entries.
        detector: Encoding detection override.
        max_depth: Deepest allowed library nesting.
    """

    def __init__(
        self,
        table: FormatTable,
        encoding: Optional[str] = None,
        load_libraries: bool = True,
        load_payload: bool = True,
        compute_hash: bool = False,
        detector: Optional[EncodingDetector] = None,
        max_depth: int = MAX_LIBRARY_DEPTH,
    ) -> None:
        self.table = table
        self.encoding = encoding
        self.load_libraries = load_libraries
        self.load_payload = load_payload
        self.compute_hash = compute_hash
        self.detector = detector
        self.max_depth = max_depth

    def resolve(self, path: PathLike) -> FormatTable:
        self._load(Path(path).resolve(), 0, ())
        return self.table

    def _references(self, tags: bytes, main: bool) -> List[str]:
        encoding, _ = resolve_encoding(tags, explicit=self.encoding, detector=self.detector)
        return library_references(tags, encoding, main=main, auxiliary=not main)

    def _load(self, path: Path, depth: int, chain: Tuple[Path, ...]) -> None:
        if path in chain:
            raise CyclicLibraryError(chain + (path,))
        if depth > self.max_depth:
            raise LibraryResolutionError(
                "Library chain deeper than {} at {}".format(self.max_depth, path)
            )
        if not path.is_file():
            if chain:
                raise MissingLibraryError(path, chain[-1])
            raise FileNotFoundError("No such file: {}".format(path))
        chain = chain + (path,)

        if self.load_libraries:
            for ref in self._references(read_tag_block(path), main=True):
                self._load((path.parent / ref).resolve(), depth + 1, chain)

        try:
            loaded = load_container(
                path,
                xsf_format=self.table.xsf_format,
                encoding=self.encoding,
                load_payload=self.load_payload,
                compute_hash=self.compute_hash,
                detector=self.detector,
            )
        except UnsupportedFormatError as e:
            if depth == 0:
                raise
            raise LibraryResolutionError(str(e)) from e
        if loaded.binary_type is not BinaryType.MINIXSF:
            raise LibraryResolutionError("{} is not an xSF container".format(path))

        entry = loaded.entry
        entry.is_library = depth > 0
        if self.load_payload:
            image = self.table.image
            if entry.start > len(image):
                raise LibraryResolutionError(
                    "{} loads at {:#x}, outside the {:#x}-byte image".format(
                        path, entry.start, len(image)
                    )
                )
            if entry.end > len(image):
                self.table.diagnostics.append(Diagnostic(
                    str(path),
                    "payload ends at {:#x}, truncated to the {:#x}-byte image".format(
                        entry.end, len(image)
                    ),
                ))
                entry.end = len(image)
            image[entry.start:entry.end] = loaded.program[:entry.end - entry.start]
        self.table.add_entry(entry)
        for message in loaded.warnings:
            self.table.diagnostics.append(Diagnostic(str(path), message))
        logger.debug("Loaded %s at [%#x, %#x) depth %d", path, entry.start, entry.end, depth)

        if self.load_libraries:
            for ref in self._references(entry.tags, main=False):
                self._load((path.parent / ref).resolve(), depth + 1, chain)


def load_title(
    path: PathLike,
    binary_type: Optional[BinaryType] = None,
    xsf_format: Optional[XsfFormat] = None,
    encoding: Optional[str] = None,
    load_libraries: bool = True,
    load_payload: bool = True,
    compute_hash: bool = False,
    compact: bool = DSF_COMPACT,
    detector: Optional[EncodingDetector] = None,
) -> FormatTable:
    """Load a title with all its dependencies into one normalized image.

    WHY: This is the entry point the CLI, minimizer and archive packer
    use. Callers get a FormatTable whose image is what the console would
    see, rebased so offsets are relative to the table.

    HOW: BIN dumps become the image directly. Containers are resolved
    with LibraryResolver into a full-size image, then normalized (unless
    only metadata was requested).

    RULES:
    - binary_type None/ANY → detected from the magic
    - binary_type BIN on a container reads the file as a raw dump
    - XSF/MINIXSF on a non-container raises UnsupportedFormatError

    Args:
        path: Root file.
        binary_type: Force the input interpretation.
        xsf_format: Force the family.
        encoding: Tag encoding for all files (detected when None).
        load_libraries: Follow _lib references.
        load_payload: Inflate payloads; False gives metadata-only tables
                      with an unused image.
        compute_hash: Record content hashes.
        compact: Use the family's compact image size.
        detector: Encoding detection override.

    Returns:
        The loaded FormatTable.
    """
    detected = format_for_magic(read_magic(path))
    if binary_type is None or binary_type is BinaryType.ANY:
        binary_type = BinaryType.MINIXSF if detected else BinaryType.BIN

    if binary_type is BinaryType.BIN:
        loaded = load_container(path, xsf_format=xsf_format or detected, encoding=encoding, raw=True)
        image = bytearray(loaded.entry.header + loaded.program)
        return FormatTable(BinaryType.BIN, loaded.xsf_format, image, [loaded.entry])

    if detected is None:
        raise UnsupportedFormatError("{} is not a known xSF container".format(path))
    xsf_format = xsf_format or detected
    image = xsf_format.sized_image(compact) if load_payload else bytearray()
    table = FormatTable(binary_type, xsf_format, image)
    LibraryResolver(
        table,
        encoding=encoding,
        load_libraries=load_libraries,
        load_payload=load_payload,
        compute_hash=compute_hash,
        detector=detector,
    ).resolve(path)
    if load_payload:
        normalize(table)
    return table
