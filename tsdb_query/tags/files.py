"""
Filename helpers for tag-encoded RRD files.

A tagged file is named '<measurement>_<key>-<value>_<key>-<value>.rrd'
with keys sorted. Keys and values are sanitised so they never contain the
'_' and '-' separators, which keeps the encoding reversible.
"""

import os
import re
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import TagResolutionError

RRD_EXTENSION = '.rrd'
TAG_SEPARATOR = '_'
TAG_VALUE_SEPARATOR = '-'
SEPARATOR_REPLACEMENT = '.'
MAX_FILENAME_LENGTH = 255

_UNSAFE_CHARACTERS = re.compile(r'[^a-zA-Z0-9\-_. ]')


def sanitize(name: str) -> str:
    """Strip characters that are unsafe in file names and trim whitespace."""
    return _UNSAFE_CHARACTERS.sub('', name).strip()


def coerce_tag_value(value: Any) -> str:
    """Convert a scalar tag value to its string form.

    Booleans become '1' or '', None becomes ''.

    Raises:
        TagResolutionError: If the value is not a scalar
    """
    if isinstance(value, bool):
        return '1' if value else ''
    if value is None:
        return ''
    if isinstance(value, (str, int, float)):
        return str(value)
    raise TagResolutionError(f"Tag value must be a scalar, got {type(value).__name__}")


def sanitize_tag_value(value: Any) -> str:
    """Sanitise a tag key or value for use inside a file name."""
    text = sanitize(coerce_tag_value(value))
    return text.replace(TAG_SEPARATOR, SEPARATOR_REPLACEMENT).replace(
        TAG_VALUE_SEPARATOR, SEPARATOR_REPLACEMENT
    )


def encode_filename(measurement: str, tags: Optional[Dict[str, Any]] = None) -> str:
    """Build the file name for a measurement and tag set.

    Args:
        measurement: Measurement name
        tags: Tag values keyed by tag name

    Returns:
        File name including the .rrd extension

    Raises:
        TagResolutionError: If a tag value is not scalar or the name is too long
    """
    name = sanitize(measurement)
    for key in sorted(tags or {}):
        name += (
            TAG_SEPARATOR + sanitize_tag_value(key)
            + TAG_VALUE_SEPARATOR + sanitize_tag_value(tags[key])
        )
    filename = name + RRD_EXTENSION
    if len(filename) > MAX_FILENAME_LENGTH:
        raise TagResolutionError(
            f"Filename exceeds {MAX_FILENAME_LENGTH} characters: {filename[:40]}..."
        )
    return filename


def decode_filename(path: str, measurement: Optional[str] = None) -> Tuple[str, Dict[str, str]]:
    """Split a tag-encoded file name into measurement and tags.

    When the measurement is known, the name is read as that measurement
    followed by 'key-value' segments, which keeps measurements containing
    '_' or '-' intact. Otherwise, or when the name does not fit that
    reading, the measurement is every '_' segment before the first later
    segment holding a '-'.

    Args:
        path: File path or bare file name
        measurement: Expected measurement name, if known

    Returns:
        Tuple of (measurement, tags)
    """
    stem = os.path.basename(path)
    if stem.endswith(RRD_EXTENSION):
        stem = stem[:-len(RRD_EXTENSION)]

    if measurement is not None:
        anchor = sanitize(measurement)
        if stem == anchor:
            return anchor, {}
        if anchor and stem.startswith(anchor + TAG_SEPARATOR):
            segments = stem[len(anchor) + 1:].split(TAG_SEPARATOR)
            if all(_is_tag_segment(segment) for segment in segments):
                return anchor, _decode_tags(segments)

    segments = stem.split(TAG_SEPARATOR)
    boundary = len(segments)
    for i, segment in enumerate(segments[1:], start=1):
        if TAG_VALUE_SEPARATOR in segment:
            boundary = i
            break

    return TAG_SEPARATOR.join(segments[:boundary]), _decode_tags(segments[boundary:])


def _is_tag_segment(segment: str) -> bool:
    key, sep, _ = segment.partition(TAG_VALUE_SEPARATOR)
    return bool(sep and key)


def _decode_tags(segments: List[str]) -> Dict[str, str]:
    tags = {}
    for segment in segments:
        key, sep, value = segment.partition(TAG_VALUE_SEPARATOR)
        if sep and key:
            tags[key] = value
    return tags
