"""
Input validation utilities.
"""

import math
import re
from typing import Tuple, Optional

_VERSION_ID_RE = re.compile(r"^v[1-9][0-9]*$")

PLAYABLE_URL_PREFIXES = ("http:", "https:", "blob:")


def validate_text(text: str, max_length: int = 5000) -> Tuple[bool, Optional[str]]:
    """
    Validate text input.

    Args:
        text: Text to validate
        max_length: Maximum length

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not text or not text.strip():
        return False, "Text cannot be empty"

    if len(text) > max_length:
        return False, f"Text too long (maximum {max_length} characters)"

    return True, None


def validate_version_id(version_id: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a stream-scoped version id (v1, v2, ...).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not version_id or not _VERSION_ID_RE.match(version_id):
        return False, f"Invalid version id: {version_id!r}"
    return True, None


def validate_audio_url(url: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a URL can be handed to the playback engine.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not url:
        return False, "URL is empty"
    if not url.startswith(PLAYABLE_URL_PREFIXES):
        return False, f"Unsupported URL scheme (must be one of: {', '.join(PLAYABLE_URL_PREFIXES)})"
    return True, None


def validate_overlap(overlap: Optional[float], max_overlap: float = 30.0) -> Tuple[bool, Optional[str]]:
    """
    Validate an overlap value in seconds.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if overlap is None:
        return True, None
    if math.isnan(overlap) or math.isinf(overlap):
        return False, "Overlap must be a finite number"
    if overlap < 0:
        return False, "Overlap cannot be negative"
    if overlap > max_overlap:
        return False, f"Overlap too large (maximum {max_overlap} seconds)"
    return True, None
