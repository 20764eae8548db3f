"""Rebase a loaded table onto its minimal covering window.

WHY: The resolver loads into a buffer as large as the console's sound
RAM, with entries at absolute addresses. Everything downstream — saving,
minimizing, archiving — is simpler and cheaper on a buffer that starts
at the lowest loaded byte and ends at the highest.

HOW: Find lowest start and highest end across entries, copy that window
into a fresh buffer after a header, write the window's load address into
the header, and shift every entry by the same delta.

RULES:
- New image length = highest - lowest + header_size
- Header field = lowest - header_size (a valid load address for byte
  header_size of the new image)
- Every entry ends up with 0 <= start <= end <= len(image)
- Only 4-byte headers are supported; anything else is a hard error
"""

from __future__ import annotations

from xsf_converter.core.codec import UnsupportedFormatError
from xsf_converter.core.ir import FormatTable

_SUPPORTED_HEADER_SIZE = 4


def normalize(table: FormatTable) -> FormatTable:
    """Rebase table in place and return it.

    Raises:
        UnsupportedFormatError: The family's header is not 4 bytes.
        ValueError: The table has no entries or an entry is out of bounds.
    """
    hs = table.header_size
    if hs != _SUPPORTED_HEADER_SIZE:
        raise UnsupportedFormatError(
            "Unsupported xSF type {} - header is {} bytes, not {}".format(
                table.xsf_format.name, hs, _SUPPORTED_HEADER_SIZE
            )
        )
    if not table.entries:
        raise ValueError("Cannot normalize a table without entries")

    lowest = min(entry.start for entry in table.entries)
    highest = max(entry.end for entry in table.entries)
    if lowest < hs or highest > len(table.image) or lowest > highest:
        raise ValueError(
            "Entries span [{:#x}, {:#x}) which does not fit the {:#x}-byte image".format(
                lowest, highest, len(table.image)
            )
        )

    image = bytearray(highest - lowest + hs)
    image[hs:] = table.image[lowest:highest]
    image[:hs] = table.xsf_format.encode_header(lowest - hs)

    delta = lowest - hs
    for entry in table.entries:
        entry.start -= delta
        entry.end -= delta

    table.image = image
    return table
