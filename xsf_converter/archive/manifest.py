"""JSON manifests of archive items.

WHY: Packing a large rip set is a two-step job in practice: collect the
items, review or hand-edit the list (rename titles, drop duplicates), then
pack. A manifest is that list on disk.

HOW: Items are dumped as an indented JSON array of objects, one per
ArchiveItem field. Both directions are validated against
manifest_schema.json with jsonschema.

RULES:
- Invalid manifests raise jsonschema.ValidationError
- Field names match ArchiveItem exactly
- Group libs keep their order; the last value is the negated primary
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import jsonschema

from xsf_converter.archive.models import ArchiveItem
from xsf_converter.core.codec import PathLike

_SCHEMA_PATH = Path(__file__).resolve().parent / "manifest_schema.json"

_CACHED_SCHEMA: Optional[Dict[str, Any]] = None


def _get_schema() -> Dict[str, Any]:
    global _CACHED_SCHEMA
    if _CACHED_SCHEMA is None:
        with open(_SCHEMA_PATH) as f:
            _CACHED_SCHEMA = json.load(f)
    return _CACHED_SCHEMA


def save_manifest(path: PathLike, items: Sequence[ArchiveItem]) -> None:
    """Write items as a validated JSON manifest."""
    data = [asdict(item) for item in items]
    jsonschema.validate(instance=data, schema=_get_schema())
    Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def load_manifest(path: PathLike) -> List[ArchiveItem]:
    """Read and validate a JSON manifest.

    Raises:
        jsonschema.ValidationError: The manifest does not match the schema.
        json.JSONDecodeError: The file is not JSON.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    jsonschema.validate(instance=data, schema=_get_schema())
    return [ArchiveItem(**row) for row in data]
