from __future__ import annotations

import io
import os
import tempfile
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional

from Cryptodome.PublicKey import RSA

from .archive import ArchiveEncoder, compress_sources
from .codec import Codec
from .config import PackConfig
from .constants import DEFAULT_COMPRESSION_LEVEL, SYMMETRIC_KEY_SIZE
from .encryption import max_wrap_payload, seal
from .errors import ConfigurationError, KeyTooLargeError, OperationCancelled
from .keys import load_public_key
from .walker import SkipCallback, walk_files


@dataclass
class WriterStats:
    files: int = 0
    raw_bytes: int = 0
    stored_bytes: int = 0
    archive_bytes: int = 0


class ArchiveWriter:
    """Produces a .pakd archive at ``out_path``.

    Boxes go to a temporary file next to the destination; ``finalize`` seals
    the stream when encrypting and moves it into place. Leaving the ``with``
    block without a successful ``finalize`` removes the temporary file, so an
    aborted run never leaves a truncated archive behind.
    """

    def __init__(
        self,
        out_path: str,
        *,
        public_key: Optional[RSA.RsaKey] = None,
        encrypt: bool = False,
        compression_level: int = DEFAULT_COMPRESSION_LEVEL,
        jobs: int = 1,
        cancel: Optional[threading.Event] = None,
    ):
        if encrypt and public_key is None:
            raise ConfigurationError("encryption requested but no public key was provided")
        if encrypt and max_wrap_payload(public_key) < SYMMETRIC_KEY_SIZE:
            raise KeyTooLargeError(
                f"a {public_key.size_in_bits()}-bit RSA key cannot wrap a {SYMMETRIC_KEY_SIZE * 8}-bit archive key"
            )
        self.out_path = out_path
        self.public_key = public_key if encrypt else None
        self.codec = Codec(compression_level)
        self.jobs = max(1, int(jobs))
        self.cancel = cancel
        self.stats = WriterStats()
        self.f: Optional[BinaryIO] = None
        self._tmp_path: Optional[str] = None
        self._encoder: Optional[ArchiveEncoder] = None
        self._sink: Optional[io.BytesIO] = None
        self._finalized = False

    @property
    def encrypted(self) -> bool:
        return self.public_key is not None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None or not self._finalized:
            self.abort()
        else:
            self.close()

    def open(self):
        if self.f is not None:
            return
        out_dir = os.path.dirname(os.path.abspath(self.out_path))
        fd, self._tmp_path = tempfile.mkstemp(prefix=".packd-", suffix=".partial", dir=out_dir)
        self.f = os.fdopen(fd, "w+b")
        # The envelope needs the whole plaintext, so encrypted archives are built in memory
        self._sink = io.BytesIO() if self.encrypted else None
        sink = self._sink if self._sink is not None else self.f
        self._encoder = ArchiveEncoder(sink, encrypted=self.encrypted, codec=self.codec)

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def abort(self):
        """Discard everything written so far."""
        self.close()
        if self._tmp_path is not None:
            try:
                os.unlink(self._tmp_path)
            except FileNotFoundError:
                pass
            self._tmp_path = None

    def _require_open(self) -> ArchiveEncoder:
        if self._encoder is None or self.f is None:
            raise RuntimeError("Archive not open")
        if self._finalized:
            raise RuntimeError("Archive already finalized")
        return self._encoder

    def _check_cancel(self, path: Optional[str] = None) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled("operation cancelled", path=path)

    def add_bytes(self, arc_path: str, data: bytes):
        enc = self._require_open()
        self._check_cancel(arc_path)
        enc.add(arc_path, data)

    def add_file(self, arc_path: str, fs_path: str):
        """Read a filesystem file fully and store it under ``arc_path``."""
        with open(fs_path, "rb") as fh:
            data = fh.read()
        self.add_bytes(arc_path, data)

    def add_tree(self, root: str, *, on_skip: Optional[SkipCallback] = None, on_entry=None) -> int:
        """Store every regular file below ``root`` in sorted path order.

        ``on_entry(source, raw_size)`` is called after each box is written.
        Returns the number of files added.
        """
        enc = self._require_open()
        sources = walk_files(root, on_skip=on_skip)
        added = 0
        for src, size, payload in compress_sources(sources, self.codec, jobs=self.jobs, cancel=self.cancel):
            self._check_cancel(src.path)
            enc.add_compressed(src.path, payload, raw_size=size)
            added += 1
            if on_entry is not None:
                on_entry(src, size)
        return added

    def finalize(self) -> WriterStats:
        enc = self._require_open()
        if self.encrypted:
            self.f.write(seal(self._sink.getvalue(), self.public_key))
            self._sink = None
        self.f.flush()
        os.fsync(self.f.fileno())
        self.stats = WriterStats(
            files=enc.count,
            raw_bytes=enc.raw_bytes,
            stored_bytes=enc.stored_bytes,
            archive_bytes=self.f.tell(),
        )
        self.close()
        os.chmod(self._tmp_path, 0o644)
        os.replace(self._tmp_path, self.out_path)
        self._tmp_path = None
        self._finalized = True
        return self.stats


def pack_directory(
    config: PackConfig,
    *,
    on_skip: Optional[SkipCallback] = None,
    on_entry=None,
) -> WriterStats:
    """Pack ``config.root`` into ``config.output``.

    The public key is loaded before the output is created, so a missing or
    malformed key fails before any compression work.
    """
    public_key = None
    if config.encrypt:
        if not config.public_key_path:
            raise ConfigurationError("encryption requested but no public key file was given")
        public_key = load_public_key(config.public_key_path)
    with ArchiveWriter(
        config.output,
        public_key=public_key,
        encrypt=config.encrypt,
        compression_level=config.compression_level,
        jobs=config.jobs,
        cancel=config.cancel,
    ) as w:
        w.add_tree(config.root, on_skip=on_skip, on_entry=on_entry)
        return w.finalize()
