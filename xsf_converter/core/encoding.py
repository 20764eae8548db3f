"""Tag text encoding detection.

WHY: [TAG] blocks carry no declared encoding. Rips from Japanese releases
are usually Shift-JIS, western ones Latin-1 or UTF-8. Guessing is only
needed when the user did not say, and a failed guess must fall back to a
documented default rather than abort a load.

HOW: EncodingDetector is a small protocol (bytes → encoding name or None)
so tests and callers can inject their own. The default implementation
wraps charset-normalizer. resolve_encoding() applies the precedence
explicit > detected > default exactly once per call site.

RULES:
- Explicit names are validated (unknown names raise ValueError)
- Detection failure is a warning, never an error
- All returned names are canonical codec names (codecs.lookup)
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

from charset_normalizer import from_bytes

from xsf_converter.config import DEFAULT_TAG_ENCODING, lookup_encoding


class EncodingDetector(Protocol):
    def detect(self, data: bytes) -> Optional[str]:
        """Return a best-guess encoding name for data, or None."""


class CharsetNormalizerDetector:
    """EncodingDetector backed by charset-normalizer."""

    def detect(self, data: bytes) -> Optional[str]:
        if not data:
            return None
        best = from_bytes(data).best()
        if best is None:
            return None
        return best.encoding


_DEFAULT_DETECTOR = CharsetNormalizerDetector()


def resolve_encoding(
    data: bytes,
    explicit: Optional[str] = None,
    detector: Optional[EncodingDetector] = None,
    default: str = DEFAULT_TAG_ENCODING,
) -> Tuple[str, Optional[str]]:
    """Pick the encoding for a tag block.

    Args:
        data: Raw tag bytes (detection input).
        explicit: Caller-chosen encoding; wins when given.
        detector: Detection service; defaults to charset-normalizer.
        default: Fallback when detection yields nothing.

    Returns:
        (canonical encoding name, warning message or None).
    """
    if explicit:
        return lookup_encoding(explicit), None
    detector = detector or _DEFAULT_DETECTOR
    guess = detector.detect(data)
    if guess:
        try:
            name = lookup_encoding(guess)
        except ValueError:
            name = None
        # Plain ASCII text reads the same under the default encoding.
        if name == "ascii":
            return lookup_encoding(default), None
        if name:
            return name, None
    if not data:
        return lookup_encoding(default), None
    return lookup_encoding(default), "Could not detect tag encoding, using {}".format(default)
