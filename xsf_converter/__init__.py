"""xSF Converter — SSF/DSF container toolkit and VFS archive packer.

WHY: Saturn (SSF) and Dreamcast/NAOMI (DSF) rips are stored as chains of
zlib-compressed containers that share one console address space through
``_lib`` tag references. Tagging, converting, minimizing and archiving them
all need the same view: one flat memory image per title.

HOW: Four-stage core — codec (one container file), resolver (library chain
into a shared image, then normalized), minimizer (delta against a library
image), archive (VFS pack/unpack). The FormatTable IR in core.ir is the
contract between stages.

RULES:
- Every stage consumes and produces FormatTable / ContainerEntry objects
- Adding a new xSF family = one new XsfFormat in formats/, no core changes
- Header width always comes from the format, never a literal
"""

__version__ = "0.1.0"
