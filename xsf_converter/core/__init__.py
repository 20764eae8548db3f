"""Container codec, library resolution, minimization and export.

WHY: The core package is the part every command shares: reading and
writing single containers, assembling a title and its libraries into one
image, and shrinking that image back down against a library.

HOW: ir.py defines the shared data structures, codec.py reads and writes
one file, resolver.py loads a whole _lib graph, normalizer.py rebases the
result, minimizer.py computes deltas and export.py writes tables back out.
tags.py and encoding.py handle the [TAG] text block.

RULES:
- IR dataclasses are the contract between stages
- Format numbers come from xsf_converter.formats, never from literals here
- Per-file failures are exceptions; batch loops turn them into diagnostics
"""
