"""Dreamcast / NAOMI sound format (DSF).

The ARM7 sound CPU sees sound RAM at 0xA0800000: 2 MB on Dreamcast and
8 MB on NAOMI boards. The NAOMI size is the default image span because it
covers both.
"""

from __future__ import annotations

from xsf_converter.formats.base import XsfFormat

DSF = XsfFormat(
    key="dsf",
    name="DSF",
    magic=0x12465350,
    header_size=4,
    base_address=0xA0800000,
    image_size=0x800004,
    compact_image_size=0x200004,
    group_tag=0xFFFFFF19,
    xsf_extension=".dsf",
    mini_extension=".minidsf",
    library_extension=".dsflib",
    bin_extension=".dsfbin",
)
