"""Saturn sound format (SSF).

The 68000 sound CPU sees 512 KB of sound RAM mapped at 0x05A00000 on the
main bus; the image carries one extra 4-byte header in front of it.
"""

from __future__ import annotations

from xsf_converter.formats.base import XsfFormat

SSF = XsfFormat(
    key="ssf",
    name="SSF",
    magic=0x11465350,
    header_size=4,
    base_address=0x05A00000,
    image_size=0x80004,
    compact_image_size=0x80004,
    group_tag=0xFFFFFF18,
    xsf_extension=".ssf",
    mini_extension=".minissf",
    library_extension=".ssflib",
    bin_extension=".ssfbin",
)
