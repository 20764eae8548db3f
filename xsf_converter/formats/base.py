"""xSF format family descriptor.

WHY: SSF and DSF share one container layout and differ only in numbers —
magic, header width, console base address, RAM size, archive group tag
and file extensions. Keeping those numbers in a descriptor lets the codec,
resolver, minimizer and archive code stay format-agnostic.

HOW: XsfFormat is a frozen dataclass. Its helper methods decode and encode
the load-address header and allocate an image buffer of the right size.

RULES:
- header_size is the only source of truth for header width
- Header values are unsigned 32-bit little-endian; out-of-range values
  raise ValueError, they never wrap
- base_address anchors a normalized image back to the console address
  space; it is only used for alignment and archive placement
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

_U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class XsfFormat:
    """Numbers that describe one xSF family.

    Attributes:
        key: Registry key and CLI name, e.g. ``"ssf"``.
        name: Human-readable family name.
        magic: Little-endian u32 at offset 0 of a container.
        header_size: Width of the load-address header inside the
                     decompressed block.
        base_address: Console address of header value 0.
        image_size: Full addressable span plus header.
        compact_image_size: Smaller span for hardware variants
                            (Dreamcast vs. NAOMI for DSF).
        group_tag: VFS type tag of this family's library-group entries.
    """

    key: str
    name: str
    magic: int
    header_size: int
    base_address: int
    image_size: int
    compact_image_size: int
    group_tag: int
    xsf_extension: str
    mini_extension: str
    library_extension: str
    bin_extension: str

    def header_value(self, header: bytes) -> int:
        """Decode the load address stored in a header (without base)."""
        if len(header) < self.header_size:
            raise ValueError(
                "{} header must be at least {} bytes long, got {}".format(
                    self.name, self.header_size, len(header)
                )
            )
        return struct.unpack_from("<I", header, 0)[0]

    def absolute_address(self, header: bytes) -> int:
        """Console address of the first program byte described by header."""
        return self.header_value(header) + self.base_address

    def encode_header(self, value: int, subtract_base: bool = False) -> bytes:
        """Encode a load address as a header.

        Args:
            value: Load address, relative to the image unless
                   subtract_base is set.
            subtract_base: Treat value as an absolute console address.
        """
        if subtract_base:
            value -= self.base_address
        if not 0 <= value <= _U32_MAX:
            raise ValueError(
                "{} load address {:#x} is outside the 32-bit range".format(self.name, value)
            )
        return struct.pack("<I", value)

    def sized_image(self, compact: bool = False) -> bytearray:
        return bytearray(self.compact_image_size if compact else self.image_size)
