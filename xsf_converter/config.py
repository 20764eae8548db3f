"""Configuration constants, archive type tables, and .env loading.

WHY: Centralizes all configurable values so they are easy to find,
update, and override. Encodings, recursion limits and the VFS type-tag
tables are plain data structures — not buried in logic — so new archive
entry kinds can be added by editing a dict.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level dicts and strings, each overridable through an XSF_*
environment variable. lookup_encoding() gives a clear error for unknown
encoding names.

RULES:
- DEFAULT_TAG_ENCODING is the documented fallback when tag encoding
  detection fails; it is resolved once per top-level operation
- Archive record names default to ASCII, synthesized tags to UTF-8
- DIRECT_FILE_TYPES maps direct-file type tags to their extension
- RAW_EXTENSIONS is the extraction table for type tags (superset)
"""

from __future__ import annotations

import codecs
import os

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Text encodings
# ---------------------------------------------------------------------------

DEFAULT_TAG_ENCODING = os.getenv("XSF_TAG_ENCODING", "utf-8")
"""Fallback encoding for [TAG] blocks when none is given or detected."""

ARCHIVE_NAME_ENCODING = os.getenv("XSF_ARCHIVE_NAME_ENCODING", "ascii")
"""Encoding of the 64-byte record names in a VFS directory."""

ARCHIVE_TAG_ENCODING = os.getenv("XSF_ARCHIVE_TAG_ENCODING", "utf-8")
"""Encoding of the tag chains synthesized when extracting library groups."""


def lookup_encoding(name: str) -> str:
    """Normalize an encoding name to its canonical codec name.

    WHY: Encodings arrive from CLI flags, .env values and detectors in
    many spellings ("UTF8", "utf_8", "Shift-JIS"). Comparing and storing
    one canonical name keeps tag round-trips predictable.

    RULES:
    - Raises ValueError for unknown encodings (never silently falls back)
    """
    try:
        return codecs.lookup(name).name
    except LookupError:
        raise ValueError("Unknown text encoding: {!r}".format(name)) from None


# ---------------------------------------------------------------------------
# Loading limits
# ---------------------------------------------------------------------------

MAX_LIBRARY_DEPTH = int(os.getenv("XSF_MAX_LIBRARY_DEPTH", "32"))
"""Deepest _lib nesting accepted before resolution is aborted."""

DSF_COMPACT = os.getenv("XSF_DSF_COMPACT", "false").lower() == "true"
"""Use the 2 MB Dreamcast image instead of the 8 MB NAOMI image for DSF."""

LOG_LEVEL = os.getenv("XSF_LOG_LEVEL", "WARNING").upper()

# ---------------------------------------------------------------------------
# VFS archive type tags
# ---------------------------------------------------------------------------

DRIVER_TYPE = 0xFFFFFF1A
MOD_TYPE = 0xFFFFFF1B
VGM_TYPE = 0xFFFFFF1C
MDX_TYPE = 0xFFFFFF1D

DIRECT_FILE_TYPES: dict[int, str] = {
    DRIVER_TYPE: ".bin",
    MOD_TYPE: ".mod",
    VGM_TYPE: ".vgm",
    MDX_TYPE: ".mdx",
}
"""Direct passthrough entries added when packing a directory."""

DRIVER_FILENAME = "vgm68.bin"
DRIVER_DISPLAY_NAME = "VGM/MOD/MDX 68K Driver"

RAW_EXTENSIONS: dict[int, str] = {
    0xFFFFFF01: ".hit",
    0xFFFFFF02: ".pxm",
    0xFFFFFF03: ".psq",
    0xFFFFFF04: ".psp",
    0xFFFFFF05: ".vag",
    0xFFFFFF08: ".tim",
    0xFFFFFF0F: ".vab",
    0xFFFFFF13: ".exe",
    0xFFFFFF14: ".psx",
    0xFFFFFF16: ".cnf",
    0xFFFFFF18: ".ssflibs",
    0xFFFFFF19: ".dsflibs",
    **DIRECT_FILE_TYPES,
}
"""Extension used when an archive record is extracted as a raw file."""

SEQUENCE_TYPE_RANGE = (0x01020000, 0x01030000)
SEQUENCE_EXTENSION = ".seq"


def raw_extension(type_tag: int) -> str:
    """Return the file extension for a raw archive record, or ""."""
    if type_tag in RAW_EXTENSIONS:
        return RAW_EXTENSIONS[type_tag]
    low, high = SEQUENCE_TYPE_RANGE
    if low <= type_tag < high:
        return SEQUENCE_EXTENSION
    return ""
