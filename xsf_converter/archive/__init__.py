"""VFS archive packing, extraction and manifests.

WHY: The VFS archive is the multi-title distribution format. Titles are
stored as groups of shared slices, so packing needs the resolver and
extraction needs the exporter; keeping that in one package keeps the core
free of archive knowledge.

HOW: models.py holds the on-disk record and the logical item,
collect.py turns a directory into items, packer.py writes an archive,
unpacker.py reads one back, manifest.py stores item lists as JSON.

RULES:
- Batch operations return diagnostics instead of aborting on one entry
- Only a bad archive header is fatal (ArchiveFormatError)
"""

from xsf_converter.archive.collect import CollectResult, collect_archive_items
from xsf_converter.archive.manifest import load_manifest, save_manifest
from xsf_converter.archive.models import ArchiveItem, ArchiveRecord
from xsf_converter.archive.packer import pack_archive
from xsf_converter.archive.unpacker import ArchiveFormatError, extract_archive

__all__ = [
    "ArchiveFormatError",
    "ArchiveItem",
    "ArchiveRecord",
    "CollectResult",
    "collect_archive_items",
    "extract_archive",
    "load_manifest",
    "pack_archive",
    "save_manifest",
]
