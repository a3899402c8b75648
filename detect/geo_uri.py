"""Parsing of URI-style marker payloads into key/value pairs."""

from __future__ import annotations

import re
from typing import Dict, List
from urllib.parse import unquote

from log_config.logger import get_logger

logger = get_logger(__name__)

_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):")
_SEGMENT_SPLIT_RE = re.compile(r"[;&]")
_COORDINATE_KEYS = ("lat", "lon", "alt")


def parse_geo_uri(uri: str) -> Dict[str, str]:
    """Parse a marker payload such as ``geo:48.2,16.3;tank=2?cam=left``.

    The scheme prefix is dropped and the remainder split on ``;`` and ``&``.
    Every ``key=value`` segment becomes an entry. For ``geo:`` URIs the
    leading coordinate segment yields ``lat``, ``lon`` and optionally
    ``alt``. Malformed segments are skipped.
    """
    text = uri.strip()
    values: Dict[str, str] = {}
    if not text:
        return values

    scheme = ""
    match = _SCHEME_RE.match(text)
    if match:
        scheme = match.group(1).lower()
        text = text[match.end():]

    head, _, query = text.partition("?")
    head_segments = _SEGMENT_SPLIT_RE.split(head)

    if scheme == "geo" and head_segments and "=" not in head_segments[0]:
        values.update(_parse_coordinates(head_segments[0]))
        head_segments = head_segments[1:]

    segments = head_segments + (_SEGMENT_SPLIT_RE.split(query) if query else [])
    for segment in segments:
        key, sep, value = segment.partition("=")
        key = unquote(key).strip().lower()
        if not sep or not key:
            if segment.strip():
                logger.debug(f"Skipping malformed URI segment: {segment!r}")
            continue
        values[key] = unquote(value).strip()
    return values


def _parse_coordinates(segment: str) -> Dict[str, str]:
    parts: List[str] = [part.strip() for part in segment.split(",")]
    if not 2 <= len(parts) <= 3:
        logger.debug(f"Skipping malformed geo coordinates: {segment!r}")
        return {}
    for part in parts:
        try:
            float(part)
        except ValueError:
            logger.debug(f"Skipping malformed geo coordinates: {segment!r}")
            return {}
    return dict(zip(_COORDINATE_KEYS, parts))
