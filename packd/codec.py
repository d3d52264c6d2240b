from __future__ import annotations

from typing import Optional

import zstandard
from zstandard import ZstdError

from .constants import DEFAULT_COMPRESSION_LEVEL, MIN_COMPRESSION_LEVEL, MAX_COMPRESSION_LEVEL
from .errors import CompressionError


class Codec:
    """One-shot zstd compressor/decompressor for box payloads.

    Decompression streams through a ``decompressobj`` so the output only
    grows with blocks actually present in the payload; the content size a
    frame header declares is never used to preallocate.
    """

    def __init__(self, level: Optional[int] = None):
        level = DEFAULT_COMPRESSION_LEVEL if level is None else int(level)
        if not (MIN_COMPRESSION_LEVEL <= level <= MAX_COMPRESSION_LEVEL):
            raise ValueError(
                f"compression level must be between {MIN_COMPRESSION_LEVEL} and {MAX_COMPRESSION_LEVEL}"
            )
        self.level = level

    def compress(self, data: bytes, *, path: Optional[str] = None) -> bytes:
        # A compressor object is not safe to share between threads; build one per call
        try:
            c = zstandard.ZstdCompressor(level=self.level, write_content_size=True)
            return c.compress(data)
        except ZstdError as e:
            raise CompressionError(f"zstd compression failed: {e}", path=path) from e

    def decompress(self, data: bytes, *, path: Optional[str] = None) -> bytes:
        try:
            dobj = zstandard.ZstdDecompressor().decompressobj()
            out = dobj.decompress(data)
        except ZstdError as e:
            raise CompressionError(f"zstd decompression failed: {e}", path=path) from e
        if not dobj.eof:
            raise CompressionError("incomplete zstd frame", path=path)
        if dobj.unused_data:
            raise CompressionError("trailing bytes after zstd frame", path=path)
        return out
