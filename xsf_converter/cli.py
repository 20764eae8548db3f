"""Command-line interface for the xSF converter.

WHY: Rippers work in batches from the terminal: convert a title between
raw/merged/mini forms, minimize a rip set against its library, and pack
or unpack VFS archives. The CLI wires the core and archive packages
behind one command with a subcommand per job.

HOW: argparse with subcommands (convert, minimize, minimize-dir, pack,
extract). Each handler loads through core.resolver, calls the matching
operation and reports through _status(). Logging is configured once from
--verbose / XSF_LOG_LEVEL, optionally into a --log-file as well.

RULES:
- Status output goes to stderr (not stdout)
- Fatal errors print "Error: ..." and exit with status 1
- Per-entry diagnostics are printed but do not change the exit status
- Python 3.9 compatible (no match/case, no X | Y unions)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from xsf_converter import __version__
from xsf_converter.archive import (
    collect_archive_items,
    extract_archive,
    load_manifest,
    pack_archive,
    save_manifest,
)
from xsf_converter.config import (
    ARCHIVE_NAME_ENCODING,
    ARCHIVE_TAG_ENCODING,
    DSF_COMPACT,
    LOG_LEVEL,
    lookup_encoding,
)
from xsf_converter.core.diagnostics import Diagnostic
from xsf_converter.core.export import binary_type_for_name, save_table
from xsf_converter.core.ir import BinaryType, FormatTable
from xsf_converter.core.minimizer import create_minixsf, minimize_directory
from xsf_converter.core.resolver import load_title
from xsf_converter.core.tags import rewrite_tags
from xsf_converter.formats import FORMATS, get_format

logger = logging.getLogger(__name__)

_BINARY_TYPES = {t.value: t for t in BinaryType}

TAG_MODES = ("replace", "update", "update-keep-libs")


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so the CLI can be piped.
    """
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _report(diagnostics: Iterable[Diagnostic]) -> None:
    for diagnostic in diagnostics:
        _status("  {}".format(diagnostic))


def _configure_logging(verbose: bool, log_file: Optional[str]) -> None:
    level = logging.INFO if verbose else getattr(logging, LOG_LEVEL, logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def _library_reference(library: Path, output: Path) -> str:
    """Path of library relative to the directory output will live in."""
    return Path(os.path.relpath(library.resolve(), output.resolve().parent)).as_posix()


def _edit_tags(
    table: FormatTable,
    tags: List[str],
    mode: str,
    out_encoding: Optional[str],
) -> None:
    """Apply --tag / --output-encoding to the primary entry."""
    index = table.primary_index()
    if index is None:
        raise ValueError("No title entry to tag")
    entry = table.entries[index]
    encoding = out_encoding or entry.tag_encoding
    if mode == "replace":
        entry.tags = rewrite_tags(b"", entry.tag_encoding, tags, out_encoding=encoding)
    else:
        entry.tags = rewrite_tags(
            entry.tags,
            entry.tag_encoding,
            tags,
            keep_libraries=mode == "update-keep-libs",
            out_encoding=encoding,
        )
    entry.tag_encoding = encoding


def _cmd_convert(args: argparse.Namespace) -> None:
    input_type = _BINARY_TYPES[args.input_type]
    xsf_format = get_format(args.format) if args.format else None
    out_encoding = lookup_encoding(args.output_encoding) if args.output_encoding else None

    _status("Loading {}...".format(args.input))
    table = load_title(
        args.input,
        binary_type=input_type,
        xsf_format=xsf_format,
        encoding=args.encoding,
        compact=args.compact,
    )
    _status("  {} {} entries, image {:#x} bytes".format(
        len(table.entries), table.xsf_format.name, len(table.image)
    ))
    _report(table.diagnostics)

    if args.tag or out_encoding:
        _edit_tags(table, args.tag or [], args.tags_mode, out_encoding)
    if table.entries:
        table.primary().modified = True

    if args.output_type:
        table.binary_type = _BINARY_TYPES[args.output_type]
    else:
        table.binary_type = binary_type_for_name(args.outputs[0]) or table.binary_type

    written = save_table(
        table,
        args.outputs,
        encoding=out_encoding,
        overwrite=not args.no_overwrite,
    )
    _status("Done! Wrote {} file(s).".format(written))


def _cmd_minimize(args: argparse.Namespace) -> None:
    output = Path(args.output)
    _status("Loading library {}...".format(args.library))
    lib = load_title(args.library, encoding=args.encoding)
    _status("Loading program {}...".format(args.program))
    psf = load_title(args.program, encoding=args.encoding)
    _report(lib.diagnostics + psf.diagnostics)

    result = create_minixsf(
        lib,
        psf,
        start_padding=0,
        end_padding=0 if args.pad_end else 1,
        library_name=_library_reference(Path(args.library), output),
        out_encoding=args.output_encoding,
    )
    psf.replace_entry(psf.primary_index(), result.entry)
    psf.binary_type = BinaryType.MINIXSF
    if args.verbose:
        _status("  lib base {:#x}, program base {:#x}".format(result.lib_base, result.psf_base))
        _status("  {} differing bytes, {} matching non-zero bytes".format(
            result.differences, result.nonzero_matches
        ))
    if result.changed:
        _status("  Kept [{:#x}, {:#x}) = {:#x} bytes".format(
            result.entry.start, result.entry.end, result.entry.size
        ))
    else:
        _status("  Identical to the library, writing an empty program")
    if args.no_overwrite and output.exists():
        _status("Skipping existing file {}".format(output))
        return
    written = save_table(psf, [output])
    if written != 1:
        _fail("Could not write {}".format(output))
    _status("Done! Saved {}".format(output))


def _cmd_minimize_dir(args: argparse.Namespace) -> None:
    _status("Minimizing {} against {}...".format(args.directory, args.library))
    result = minimize_directory(
        args.directory,
        args.library,
        corrected_library=args.corrected_library,
        pad_end=args.pad_end,
        encoding=args.encoding,
        out_encoding=args.output_encoding,
        backup=not args.no_backup,
    )
    _report(result.diagnostics)
    _status("Done! Wrote {} file(s).".format(len(result.written)))


def _cmd_pack(args: argparse.Namespace) -> None:
    source = Path(args.source)
    xsf_format = get_format(args.format) if args.format else None
    if source.is_dir():
        _status("Collecting {}...".format(source))
        collected = collect_archive_items(
            source,
            xsf_format=xsf_format,
            encoding=args.encoding,
            use_hash=not args.no_hash,
            add_direct_files=not args.no_direct_files,
        )
        _report(collected.diagnostics)
        items = collected.items
    elif source.suffix.lower() == ".json":
        items = load_manifest(source)
    else:
        _fail("Pack source must be a directory or a .json manifest: {}".format(source))
        return
    _status("  {} item(s)".format(len(items)))

    output = Path(args.output)
    if output.suffix.lower() == ".json":
        save_manifest(output, items)
        _status("Done! Saved manifest {}".format(output))
        return
    result = pack_archive(
        output,
        items,
        name_encoding=lookup_encoding(args.name_encoding),
        compact=args.compact,
    )
    _report(result.diagnostics)
    _status("Done! Saved {}".format(output))


def _cmd_extract(args: argparse.Namespace) -> None:
    output_type = _BINARY_TYPES[args.output_type]
    _status("Extracting {}...".format(args.archive))
    result = extract_archive(
        args.archive,
        output_dir=args.output_dir,
        binary_type=output_type,
        output_names=args.output_names,
        name_encoding=lookup_encoding(args.name_encoding),
        tag_encoding=args.tag_encoding,
        merge_groups=not args.raw,
        overwrite=not args.no_overwrite,
    )
    _report(result.diagnostics)
    _status("Done! Wrote {} file(s).".format(len(result.written)))
    for path in result.written:
        _status("  {}".format(Path(path).name))


def _add_encoding_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--encoding",
        default=None,
        help="Tag encoding of the input files (default: detected).",
    )
    parser.add_argument(
        "--output-encoding",
        default=None,
        help="Tag encoding of written files (default: same as input).",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    WHY: Separating parser construction from main() makes the CLI
    testable: tests can inspect the parser without touching files.

    RULES:
    - Global: --verbose, --log-file, --version
    - One subparser per operation, each with set_defaults(handler=...)
    """
    parser = argparse.ArgumentParser(
        prog="xsf-converter",
        description="Convert, minimize and archive SSF/DSF xSF files.",
    )
    parser.add_argument("--version", action="version", version="%(prog)s " + __version__)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress details.")
    parser.add_argument("--log-file", default=None, help="Also write log messages to this file.")
    sub = parser.add_subparsers(dest="command", required=True)
    binary_choices = sorted(_BINARY_TYPES)
    format_choices = sorted(FORMATS)

    convert = sub.add_parser("convert", help="Load a title and save it in another form.")
    convert.add_argument("input", help="Input file (xSF, miniXSF or raw dump).")
    convert.add_argument("outputs", nargs="+", help="Output file(s).")
    convert.add_argument("--input-type", choices=binary_choices, default="any",
                         help="How to read the input (default: %(default)s).")
    convert.add_argument("--output-type", choices=binary_choices, default=None,
                         help="How to save (default: from the first output's extension).")
    convert.add_argument("--format", choices=format_choices, default=None,
                         help="Force the xSF family.")
    convert.add_argument("--compact", action="store_true", default=DSF_COMPACT,
                         help="Use the compact (Dreamcast) DSF image size.")
    convert.add_argument("--tags-mode", choices=TAG_MODES, default="update-keep-libs",
                         help="How --tag lines are applied (default: %(default)s).")
    convert.add_argument("--tag", action="append", default=None, metavar="KEY=VALUE",
                         help="Tag line to write. Can be specified multiple times.")
    convert.add_argument("--no-overwrite", action="store_true", help="Keep existing files.")
    _add_encoding_flags(convert)
    convert.set_defaults(handler=_cmd_convert)

    minimize = sub.add_parser("minimize", help="Minimize one program against a library.")
    minimize.add_argument("program", help="Full program (xSF or raw dump).")
    minimize.add_argument("library", help="Library the output will reference.")
    minimize.add_argument("output", help="Output miniXSF.")
    minimize.add_argument("--pad-end", action="store_true",
                          help="Round the end of the kept range up to the header size.")
    minimize.add_argument("--no-overwrite", action="store_true", help="Keep existing files.")
    minimize.add_argument("--verbose", action="store_true", default=argparse.SUPPRESS,
                          help="Show alignment and difference counts.")
    _add_encoding_flags(minimize)
    minimize.set_defaults(handler=_cmd_minimize)

    minimize_dir = sub.add_parser("minimize-dir", help="Minimize every program in a directory.")
    minimize_dir.add_argument("directory", help="Directory searched recursively.")
    minimize_dir.add_argument("library", help="Library to minimize against.")
    minimize_dir.add_argument("--corrected-library", default=None, metavar="NAME",
                              help="Also build a corrected library with this file name.")
    minimize_dir.add_argument("--pad-end", action="store_true",
                              help="Round the end of the kept range up to the header size.")
    minimize_dir.add_argument("--no-backup", action="store_true",
                              help="Do not keep the originals as .BAK files.")
    _add_encoding_flags(minimize_dir)
    minimize_dir.set_defaults(handler=_cmd_minimize_dir)

    pack = sub.add_parser("pack", help="Pack a directory or manifest into a VFS archive.")
    pack.add_argument("source", help="Directory to collect, or a .json manifest.")
    pack.add_argument("output", help="Output .vfs archive, or a .json manifest.")
    pack.add_argument("--format", choices=format_choices, default=None,
                      help="Only collect this xSF family.")
    pack.add_argument("--no-hash", action="store_true",
                      help="Deduplicate libraries by path instead of content.")
    pack.add_argument("--no-direct-files", action="store_true",
                      help="Skip the 68K driver and MOD/VGM/MDX files.")
    pack.add_argument("--name-encoding", default=ARCHIVE_NAME_ENCODING,
                      help="Encoding of record names (default: %(default)s).")
    pack.add_argument("--compact", action="store_true", default=DSF_COMPACT,
                      help="Use the compact (Dreamcast) DSF image size.")
    pack.add_argument("--encoding", default=None,
                      help="Tag encoding of the input files (default: detected).")
    pack.set_defaults(handler=_cmd_pack)

    extract = sub.add_parser("extract", help="Extract a VFS archive.")
    extract.add_argument("archive", help="VFS archive to read.")
    extract.add_argument("output_names", nargs="*", help="Output file names, used in order.")
    extract.add_argument("--output-dir", default=None,
                         help="Directory to write into (default: the archive's).")
    extract.add_argument("--output-type", choices=binary_choices, default="minixsf",
                         help="How library groups are saved (default: %(default)s).")
    extract.add_argument("--raw", action="store_true",
                         help="Write every record raw instead of rebuilding groups.")
    extract.add_argument("--no-overwrite", action="store_true", help="Keep existing files.")
    extract.add_argument("--name-encoding", default=ARCHIVE_NAME_ENCODING,
                         help="Encoding of record names (default: %(default)s).")
    extract.add_argument("--tag-encoding", default=ARCHIVE_TAG_ENCODING,
                         help="Encoding of written tags (default: %(default)s).")
    extract.set_defaults(handler=_cmd_extract)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.log_file)
    try:
        args.handler(args)
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        _fail(str(e))


if __name__ == "__main__":
    main()
