"""[TAG] block parsing, library reference extraction and tag rewriting.

WHY: Tags carry both metadata (title, artist, length) and the dependency
graph (_lib, _lib2, ...). The resolver needs the references in load
order, the minimizer and exporter need to rewrite the _lib lines, and
the archive collector needs the title.

HOW: A tag block is the literal bytes "[TAG]" followed by newline-joined
key=value lines in some text encoding. Helpers decode the lines once,
then filter or rebuild them. Undecodable bytes are replaced rather than
raising, matching how players read these files.

RULES:
- No "[TAG]" marker → no tags (empty results, never an error)
- Library keys match case-insensitively: "_lib" is the main dependency,
  "_libN" with N >= 2 are auxiliaries ordered by N
- rewrite_tags() puts the new lines first, then surviving old lines
- Malformed lines are skipped with a logged warning
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from xsf_converter.config import DEFAULT_TAG_ENCODING

logger = logging.getLogger(__name__)

TAG_MARKER = b"[TAG]"

_LIB_KEY_RE = re.compile(r"^_lib(\d*)$", re.IGNORECASE)


def tag_lines(data: bytes, encoding: str = DEFAULT_TAG_ENCODING) -> List[str]:
    """Decode the lines of a tag block, or [] if there is no block."""
    if not data or not data.startswith(TAG_MARKER):
        return []
    text = data[len(TAG_MARKER):].decode(encoding, errors="replace")
    return text.splitlines()


def parse_tags(data: bytes, encoding: str = DEFAULT_TAG_ENCODING) -> Dict[str, str]:
    """Parse key=value lines into a dict; the first occurrence wins."""
    tags: Dict[str, str] = {}
    for line in tag_lines(data, encoding):
        if not line.strip():
            continue
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            logger.warning("%r was not a valid tag line", line)
            continue
        tags.setdefault(key, value)
    return tags


def _library_order(key: str) -> Optional[int]:
    """Sort key of a library tag: 1 for _lib, N for _libN (N >= 2), else None."""
    match = _LIB_KEY_RE.match(key.strip())
    if match is None:
        return None
    digits = match.group(1)
    if not digits:
        return 1
    order = int(digits)
    return order if order >= 2 else None


def library_references(
    data: bytes,
    encoding: str = DEFAULT_TAG_ENCODING,
    main: bool = True,
    auxiliary: bool = True,
) -> List[str]:
    """Extract library file references in load order.

    Args:
        data: Raw tag bytes.
        encoding: Tag text encoding.
        main: Include the _lib= (main chain) reference.
        auxiliary: Include _libN= (N >= 2) references.

    Returns:
        Relative paths, main first, auxiliaries ascending by N.
    """
    found: List[Tuple[int, str]] = []
    for line in tag_lines(data, encoding):
        if not line[:4].lower() == "_lib":
            continue
        key, sep, value = line.partition("=")
        order = _library_order(key)
        value = value.strip()
        if order is None or not sep or not value:
            logger.warning("%r was not a valid library", line)
            continue
        if order == 1 and main:
            found.append((order, value))
        elif order >= 2 and auxiliary:
            found.append((order, value))
    found.sort(key=lambda item: item[0])
    return [value for _, value in found]


def rewrite_tags(
    data: bytes,
    encoding: str = DEFAULT_TAG_ENCODING,
    lines: Iterable[str] = (),
    keep_libraries: bool = False,
    replace_keys: bool = True,
    out_encoding: Optional[str] = None,
    newline: str = "\n",
) -> bytes:
    """Build a new tag block from new lines plus surviving old lines.

    WHY: Minimizing, merging and tag editing all replace a few keys (most
    often the _lib chain) while keeping everything else.

    HOW: Old lines are dropped when they start with a key being replaced
    ("key=") or, unless keep_libraries, with "_lib". New lines go first.

    RULES:
    - Matching is case-insensitive
    - replace_keys=False keeps old lines with the same keys (duplicates)
    - The result always starts with the "[TAG]" marker
    """
    new_lines = list(lines)
    dropped: List[str] = []
    if replace_keys:
        for line in new_lines:
            key = line.split("=", 1)[0]
            if key:
                dropped.append((key + "=").lower())
    if not keep_libraries:
        dropped.append("_lib")

    kept = [
        line for line in tag_lines(data, encoding)
        if not any(line.lower().startswith(prefix) for prefix in dropped)
    ]
    text = newline.join(new_lines + kept)
    return TAG_MARKER + text.encode(out_encoding or encoding, errors="replace")


def find_title(path: str, tags: bytes, encoding: str = DEFAULT_TAG_ENCODING) -> str:
    """Return the title tag, or the file stem when there is none."""
    for line in tag_lines(tags, encoding):
        key, sep, value = line.partition("=")
        if sep and key.strip().lower() == "title" and value:
            return value
    return Path(path).stem
