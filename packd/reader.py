from __future__ import annotations

import io
import os
from typing import Iterator, List, Optional

from Cryptodome.PublicKey import RSA

from .archive import ArchiveDecoder, ArchiveHeader, Box, Entry
from .codec import Codec
from .config import UnpackConfig
from .constants import MARKER, ENVELOPE_LEN_STRUCT, GCM_NONCE_SIZE, GCM_TAG_SIZE
from .encryption import open_envelope
from .errors import FormatError, IntegrityError
from .keys import load_private_key
from .pathutil import local_parts


# RSA moduli from 768 to 16384 bits
_WRAPPED_KEY_SIZES = range(96, 2049)


def _looks_sealed(raw: bytes) -> bool:
    if raw[: len(MARKER)] == MARKER or len(raw) < ENVELOPE_LEN_STRUCT.size:
        return False
    (key_len,) = ENVELOPE_LEN_STRUCT.unpack_from(raw, 0)
    body = ENVELOPE_LEN_STRUCT.size + key_len
    return key_len in _WRAPPED_KEY_SIZES and len(raw) >= body + GCM_NONCE_SIZE + GCM_TAG_SIZE


class ArchiveReader:
    """Reads a .pakd archive, opening the envelope first when a key is given.

    The archive is read whole: decryption needs the complete envelope, and
    entries are only reachable by a sequential scan anyway.
    """

    def __init__(self, path: str, *, private_key: Optional[RSA.RsaKey] = None):
        self.path = path
        self.private_key = private_key
        self.codec = Codec()
        self._plain: Optional[bytes] = None
        self._decoder: Optional[ArchiveDecoder] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self._decoder is not None:
            return
        with open(self.path, "rb") as fh:
            raw = fh.read()
        if self.private_key is not None:
            if raw[: len(MARKER)] == MARKER:
                raise IntegrityError("archive is not encrypted but a private key was supplied", path=self.path)
            raw = open_envelope(raw, self.private_key)
        try:
            decoder = ArchiveDecoder(io.BytesIO(raw), codec=self.codec)
        except FormatError as e:
            if self.private_key is None and _looks_sealed(raw):
                raise IntegrityError(
                    "archive appears to be encrypted; a private key is required", path=self.path
                ) from e
            raise
        if decoder.header.encrypted and self.private_key is None:
            raise IntegrityError("archive header is flagged encrypted but the stream is not sealed", path=self.path)
        if not decoder.header.encrypted and self.private_key is not None:
            raise IntegrityError("sealed archive carries a plain header", path=self.path)
        self._plain = raw
        self._decoder = decoder

    def close(self):
        self._decoder = None
        self._plain = None

    def _require_open(self) -> ArchiveDecoder:
        if self._decoder is None:
            raise RuntimeError("Archive not open")
        return self._decoder

    @property
    def header(self) -> ArchiveHeader:
        return self._require_open().header

    def _fresh_decoder(self) -> ArchiveDecoder:
        self._require_open()
        return ArchiveDecoder(io.BytesIO(self._plain), codec=self.codec)

    def boxes(self) -> Iterator[Box]:
        """Raw boxes (compressed payloads), for listing without decompressing."""
        return self._fresh_decoder().boxes()

    def entries(self) -> Iterator[Entry]:
        return iter(self._fresh_decoder())

    def extract_all(self, outdir: str, *, on_entry=None) -> List[str]:
        """Write every entry below ``outdir``; returns the written file paths.

        Parent directories are created as needed. A path seen twice is written
        twice, so the last box wins. The whole archive is decoded and every
        path checked before the first file is written.
        """
        decoded = [(e.path, local_parts(e.path), e.content) for e in self.entries()]
        os.makedirs(outdir, exist_ok=True)
        written: List[str] = []
        for rel, parts, content in decoded:
            dst = os.path.join(outdir, *parts)
            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
            with open(dst, "wb") as fh:
                fh.write(content)
            written.append(dst)
            if on_entry is not None:
                on_entry(rel, len(content))
        return written


def unpack_archive(config: UnpackConfig, *, on_entry=None) -> List[str]:
    """Extract ``config.archive`` into ``config.outdir``.

    The private key, when configured, is loaded before the archive is read.
    """
    private_key = None
    if config.private_key_path:
        private_key = load_private_key(config.private_key_path, config.passphrase)
    with ArchiveReader(config.archive, private_key=private_key) as r:
        return r.extract_all(config.outdir, on_entry=on_entry)
