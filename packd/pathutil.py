from __future__ import annotations

import os
from typing import List

from .constants import MAX_PATH_BYTES
from .errors import FormatError


def check_path(p: str) -> str:
    """Validate an archive path without rewriting it.

    Rules:
    - Forward slashes separate segments; any other character, backslashes
      included, belongs to the name
    - No leading slash, no empty, '.' or '..' segments
    """
    if not p:
        raise FormatError("empty archive path", path=p)
    if p.startswith("/"):
        raise FormatError("archive path must be relative", path=p)
    for q in p.split("/"):
        if q in ("", ".", ".."):
            raise FormatError(f"invalid path segment {q!r}", path=p)
    return p


def local_parts(p: str) -> List[str]:
    """Split a checked archive path into segments safe to join below a directory."""
    parts = check_path(p).split("/")
    seps = {s for s in (os.sep, os.altsep) if s and s != "/"}
    for q in parts:
        if any(s in q for s in seps):
            raise FormatError("path segment contains a local separator", path=p)
    return parts


def encode_path(p: str) -> bytes:
    """Return the UTF-8 form of an archive path, enforcing the u16 length field."""
    try:
        raw = p.encode("utf-8")
    except UnicodeEncodeError as e:
        raise FormatError("path is not valid UTF-8", path=p) from e
    if len(raw) > MAX_PATH_BYTES:
        raise FormatError(f"path too long: {len(raw)} bytes (max {MAX_PATH_BYTES})", path=p[:64] + "...")
    return raw
