"""xSF format registry — pluggable family hub.

WHY: The codec, resolver, minimizer, archive and CLI layers all need to
find a family by CLI name, by container magic or by archive group tag. A
central dict makes it trivial to add a new family: create the XsfFormat,
import it here, add one line.

HOW: FORMATS maps string keys to XsfFormat *instances*. Lookup helpers
build their indexes from FORMATS so they never drift from it.

RULES:
- Keys are lowercase identifiers (used in CLI flags and manifests)
- Magic values and group tags must be unique across families
- guess_raw_format() is only for headerless BIN dumps
"""

from __future__ import annotations

from typing import Optional

from xsf_converter.formats.base import XsfFormat
from xsf_converter.formats.dsf import DSF
from xsf_converter.formats.ssf import SSF

FORMATS: dict[str, XsfFormat] = {
    "ssf": SSF,
    "dsf": DSF,
}

# Largest SSF load address; raw dumps whose header word is above this are
# assumed to be DSF.
_SSF_MAX_ADDRESS = 0x80000


def get_format(key: str) -> XsfFormat:
    try:
        return FORMATS[key.lower()]
    except KeyError:
        available = ", ".join(sorted(FORMATS))
        raise ValueError("Unknown xSF format {!r}. Available: {}".format(key, available)) from None


def format_for_magic(magic: int) -> Optional[XsfFormat]:
    """Return the family whose container magic matches, or None."""
    for fmt in FORMATS.values():
        if fmt.magic == magic:
            return fmt
    return None


def format_for_group_tag(type_tag: int) -> Optional[XsfFormat]:
    """Return the family whose VFS library-group tag matches, or None."""
    for fmt in FORMATS.values():
        if fmt.group_tag == type_tag:
            return fmt
    return None


def guess_raw_format(first_word: int) -> XsfFormat:
    """Guess the family of a headerless RAM dump from its first u32."""
    return SSF if first_word < _SSF_MAX_ADDRESS else DSF


__all__ = [
    "DSF",
    "FORMATS",
    "SSF",
    "XsfFormat",
    "format_for_group_tag",
    "format_for_magic",
    "get_format",
    "guess_raw_format",
]
