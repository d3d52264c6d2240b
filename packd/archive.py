from __future__ import annotations

import io
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple

from .codec import Codec
from .constants import (
    MARKER,
    HEADER_STRUCT,
    HEADER_RESERVED,
    BOX_HEADER_STRUCT,
    FLAG_ENCRYPTED,
    FLAG_PLAIN,
)
from .errors import CompressionError, FormatError, OperationCancelled
from .pathutil import check_path, encode_path
from .walker import SkipCallback, SourceFile, walk_files


# Layout (all integers little endian):
#  marker[8] | flag u8, reserved[7] | { path_len u16, data_len u64, path, data }*


@dataclass
class ArchiveHeader:
    encrypted: bool
    reserved: bytes = HEADER_RESERVED


@dataclass
class Box:
    path: str
    data: bytes  # compressed payload
    offset: int = 0  # offset of the box header in the archive stream


@dataclass
class Entry:
    path: str
    content: bytes


def pack_header(encrypted: bool) -> bytes:
    flag = FLAG_ENCRYPTED if encrypted else FLAG_PLAIN
    return MARKER + HEADER_STRUCT.pack(flag, HEADER_RESERVED)


def pack_box(path: str, payload: bytes) -> bytes:
    raw_path = encode_path(path)
    return BOX_HEADER_STRUCT.pack(len(raw_path), len(payload)) + raw_path + payload


class ArchiveEncoder:
    """Streaming box writer.

    The marker and header are written on construction; each ``add`` appends
    one box. The encoder never seals: the header flag only records whether
    the caller is going to wrap the stream in an envelope.
    """

    def __init__(self, f: BinaryIO, *, encrypted: bool = False, codec: Optional[Codec] = None):
        self.f = f
        self.codec = codec or Codec()
        self.encrypted = encrypted
        self.count = 0
        self.raw_bytes = 0
        self.stored_bytes = 0
        self.f.write(pack_header(encrypted))

    def add(self, path: str, content: bytes) -> Box:
        check_path(path)
        encode_path(path)
        payload = self.codec.compress(content, path=path)
        return self.add_compressed(path, payload, raw_size=len(content))

    def add_compressed(self, path: str, payload: bytes, *, raw_size: int = 0) -> Box:
        check_path(path)
        self.raw_bytes += raw_size
        offset = self.f.tell() if self.f.seekable() else 0
        self.f.write(pack_box(path, payload))
        self.count += 1
        self.stored_bytes += len(payload)
        return Box(path=path, data=payload, offset=offset)


def encode_entries(
    entries: Iterable[Tuple[str, bytes]],
    *,
    encrypted: bool = False,
    codec: Optional[Codec] = None,
) -> bytes:
    """Encode ``(path, content)`` pairs into a complete archive stream."""
    buf = io.BytesIO()
    enc = ArchiveEncoder(buf, encrypted=encrypted, codec=codec)
    for path, content in entries:
        enc.add(path, content)
    return buf.getvalue()


def compress_sources(
    sources: List[SourceFile],
    codec: Codec,
    *,
    jobs: int = 1,
    cancel: Optional[threading.Event] = None,
) -> Iterator[Tuple[SourceFile, int, bytes]]:
    """Yield ``(source, raw_size, payload)`` in the order of ``sources``.

    With ``jobs > 1`` reads and compression run on a bounded thread pool; at
    most ``jobs * 2`` results are in flight and they are still yielded in
    input order.
    """

    def _work(src: SourceFile) -> Tuple[int, bytes]:
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("operation cancelled", path=src.path)
        data = src.read()
        return len(data), codec.compress(data, path=src.path)

    if jobs <= 1:
        for src in sources:
            size, payload = _work(src)
            yield src, size, payload
        return

    window = jobs * 2
    with ThreadPoolExecutor(max_workers=jobs) as pool:
        pending = []
        try:
            for src in sources:
                pending.append((src, pool.submit(_work, src)))
                if len(pending) >= window:
                    head, fut = pending.pop(0)
                    size, payload = fut.result()
                    yield head, size, payload
            while pending:
                head, fut = pending.pop(0)
                size, payload = fut.result()
                yield head, size, payload
        finally:
            for _, fut in pending:
                fut.cancel()


def encode_directory(
    root: str,
    *,
    encrypted: bool = False,
    codec: Optional[Codec] = None,
    jobs: int = 1,
    cancel: Optional[threading.Event] = None,
    on_skip: Optional[SkipCallback] = None,
) -> bytes:
    """Walk ``root`` and return the archive stream for every regular file below it."""
    codec = codec or Codec()
    sources = walk_files(root, on_skip=on_skip)
    buf = io.BytesIO()
    enc = ArchiveEncoder(buf, encrypted=encrypted, codec=codec)
    for src, size, payload in compress_sources(sources, codec, jobs=jobs, cancel=cancel):
        enc.add_compressed(src.path, payload, raw_size=size)
    return buf.getvalue()


def _stream_size(f: BinaryIO) -> int:
    pos = f.tell()
    end = f.seek(0, os.SEEK_END)
    f.seek(pos)
    return end


def read_header(f: BinaryIO) -> ArchiveHeader:
    marker = f.read(len(MARKER))
    if len(marker) < len(MARKER) and MARKER.startswith(marker):
        raise FormatError("truncated archive", offset=len(marker))
    if marker != MARKER:
        raise FormatError("invalid signature", offset=0)
    raw = f.read(HEADER_STRUCT.size)
    if len(raw) != HEADER_STRUCT.size:
        raise FormatError("truncated archive", offset=len(MARKER) + len(raw))
    flag, reserved = HEADER_STRUCT.unpack(raw)
    return ArchiveHeader(encrypted=(flag == FLAG_ENCRYPTED), reserved=reserved)


def iter_boxes(f: BinaryIO) -> Iterator[Box]:
    """Yield raw boxes from ``f`` positioned just after the header.

    Length fields are checked against the bytes left in the stream before any
    read, so a forged ``data_len`` cannot trigger a huge allocation.
    """
    size = _stream_size(f)
    while True:
        offset = f.tell()
        fixed = f.read(BOX_HEADER_STRUCT.size)
        if not fixed:
            return
        if len(fixed) != BOX_HEADER_STRUCT.size:
            raise FormatError("truncated archive: partial box header", offset=offset)
        path_len, data_len = BOX_HEADER_STRUCT.unpack(fixed)
        remaining = size - (offset + BOX_HEADER_STRUCT.size)
        if path_len > remaining:
            raise FormatError(
                f"truncated archive: path length {path_len} exceeds {remaining} remaining bytes", offset=offset
            )
        raw_path = f.read(path_len)
        try:
            path = raw_path.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FormatError("box path is not valid UTF-8", offset=offset) from e
        remaining -= path_len
        if data_len > remaining:
            raise FormatError(
                f"truncated archive: data length {data_len} exceeds {remaining} remaining bytes",
                path=path,
                offset=offset,
            )
        data = f.read(data_len)
        if len(raw_path) != path_len or len(data) != data_len:
            raise FormatError("truncated archive", path=path, offset=offset)
        yield Box(path=path, data=data, offset=offset)


class ArchiveDecoder:
    """Sequential decoder over a seekable archive stream.

    The header is read (and the marker checked) on construction; iterating
    yields decompressed entries in archive order.
    """

    def __init__(self, f: BinaryIO, *, codec: Optional[Codec] = None):
        self.f = f
        self.codec = codec or Codec()
        self.header = read_header(f)

    def boxes(self) -> Iterator[Box]:
        return iter_boxes(self.f)

    def __iter__(self) -> Iterator[Entry]:
        for box in self.boxes():
            try:
                content = self.codec.decompress(box.data, path=box.path)
            except CompressionError as e:
                raise FormatError("corrupt entry", path=box.path, offset=box.offset) from e
            yield Entry(path=box.path, content=content)


def decode(data: bytes, *, codec: Optional[Codec] = None) -> List[Entry]:
    """Decode a complete plaintext archive stream into its entries."""
    return list(ArchiveDecoder(io.BytesIO(data), codec=codec))
