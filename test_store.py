from __future__ import annotations

import os
import tempfile
import threading
import unittest
from pathlib import Path

from Cryptodome.PublicKey import RSA

from packd.archive import encode_entries
from packd.config import PackConfig, UnpackConfig
from packd.constants import MARKER
from packd.encryption import seal
from packd.errors import (
    ConfigurationError,
    FormatError,
    IntegrityError,
    KeyLoadError,
    KeyUnwrapError,
    OperationCancelled,
)
from packd.reader import ArchiveReader, unpack_archive
from packd.writer import ArchiveWriter, pack_directory


_KEY = None


def _key() -> RSA.RsaKey:
    global _KEY
    if _KEY is None:
        _KEY = RSA.generate(2048)
    return _KEY


def _create_sample_files(base: Path):
    (base / "docs").mkdir()
    (base / "docs" / "deep" / "deeper").mkdir(parents=True)
    (base / "docs" / "a.txt").write_text("hello world\n" * 50, encoding="utf-8")
    (base / "docs" / "b.bin").write_bytes(os.urandom(4096))
    (base / "docs" / "deep" / "deeper" / "c.dat").write_bytes(b"\x00" * 10_000)
    (base / "docs" / "empty").write_bytes(b"")
    (base / "notes.md").write_text("# Title\nSome content\n", encoding="utf-8")
    (base / "unicodé.txt").write_text("ünïcödé", encoding="utf-8")


def _snapshot(base: Path):
    snap = {}
    for root, _dirs, files in os.walk(base):
        for f in files:
            full = Path(root) / f
            snap[full.relative_to(base).as_posix()] = full.read_bytes()
    return snap


def _write_keys(base: Path):
    priv = base / "key.pem"
    pub = base / "key.pub.pem"
    priv.write_bytes(_key().export_key())
    pub.write_bytes(_key().public_key().export_key())
    return priv, pub


def _leftovers(base: Path):
    return [p.name for p in base.iterdir() if p.name.endswith(".partial")]


class StoreTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_plain_roundtrip(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _create_sample_files(src)
            archive = tmp / "out.pakd"
            stats = pack_directory(PackConfig(root=str(src), output=str(archive)))
            self.assertEqual(6, stats.files)
            self.assertEqual(archive.stat().st_size, stats.archive_bytes)
            self.assertEqual(MARKER + b"\x00", archive.read_bytes()[:9])

            out = tmp / "out"
            written = unpack_archive(UnpackConfig(archive=str(archive), outdir=str(out)))
            self.assertEqual(6, len(written))
            self.assertEqual(_snapshot(src), _snapshot(out))
            self.assertEqual([], _leftovers(tmp))

        self.run_with_tmpdir(scenario)

    def test_encrypted_roundtrip(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _create_sample_files(src)
            priv, pub = _write_keys(tmp)
            archive = tmp / "sealed.pakd"
            pack_directory(
                PackConfig(root=str(src), output=str(archive), encrypt=True, public_key_path=str(pub), jobs=3)
            )
            raw = archive.read_bytes()
            self.assertNotEqual(MARKER, raw[:8])

            with ArchiveReader(str(archive), private_key=_key()) as r:
                self.assertTrue(r.header.encrypted)
                self.assertEqual(sorted(_snapshot(src)), [b.path for b in r.boxes()])

            out = tmp / "out"
            unpack_archive(UnpackConfig(archive=str(archive), outdir=str(out), private_key_path=str(priv)))
            self.assertEqual(_snapshot(src), _snapshot(out))

        self.run_with_tmpdir(scenario)

    def test_encrypt_without_key_fails_fast(self):
        def scenario(tmp: Path):
            archive = tmp / "x.pakd"
            with self.assertRaises(ConfigurationError):
                ArchiveWriter(str(archive), encrypt=True)
            with self.assertRaises(ConfigurationError):
                pack_directory(PackConfig(root=str(tmp), output=str(archive), encrypt=True))
            with self.assertRaises(KeyLoadError):
                pack_directory(
                    PackConfig(root=str(tmp), output=str(archive), encrypt=True, public_key_path=str(tmp / "nope.pem"))
                )
            self.assertFalse(archive.exists())
            self.assertEqual([], _leftovers(tmp))

        self.run_with_tmpdir(scenario)

    def test_cancel_removes_partial_output(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _create_sample_files(src)
            archive = tmp / "out.pakd"
            cancel = threading.Event()

            def _on_entry(source, size):
                cancel.set()

            with self.assertRaises(OperationCancelled):
                pack_directory(PackConfig(root=str(src), output=str(archive), cancel=cancel), on_entry=_on_entry)
            self.assertFalse(archive.exists())
            self.assertEqual([], _leftovers(tmp))

        self.run_with_tmpdir(scenario)

    def test_unfinalized_writer_leaves_nothing(self):
        def scenario(tmp: Path):
            archive = tmp / "out.pakd"
            with ArchiveWriter(str(archive)) as w:
                w.add_bytes("a.txt", b"data")
            self.assertFalse(archive.exists())
            self.assertEqual([], _leftovers(tmp))

        self.run_with_tmpdir(scenario)

    def test_writer_add_file_and_bytes(self):
        def scenario(tmp: Path):
            src = tmp / "input.bin"
            src.write_bytes(b"file bytes")
            archive = tmp / "out.pakd"
            with ArchiveWriter(str(archive), compression_level=1) as w:
                w.add_file("nested/input.bin", str(src))
                w.add_bytes("inline.txt", b"inline")
                stats = w.finalize()
            self.assertEqual(2, stats.files)
            with ArchiveReader(str(archive)) as r:
                self.assertEqual(
                    [("nested/input.bin", b"file bytes"), ("inline.txt", b"inline")],
                    [(e.path, e.content) for e in r.entries()],
                )

        self.run_with_tmpdir(scenario)

    def test_duplicate_paths_last_wins(self):
        def scenario(tmp: Path):
            archive = tmp / "dup.pakd"
            archive.write_bytes(encode_entries([("same.txt", b"first"), ("same.txt", b"second")]))
            out = tmp / "out"
            with ArchiveReader(str(archive)) as r:
                r.extract_all(str(out))
            self.assertEqual(b"second", (out / "same.txt").read_bytes())

        self.run_with_tmpdir(scenario)

    def test_unsafe_paths_are_rejected_before_writing(self):
        def scenario(tmp: Path):
            from packd.archive import pack_box, pack_header
            from packd.codec import Codec

            codec = Codec(1)
            archive = tmp / "evil.pakd"
            archive.write_bytes(
                pack_header(False)
                + pack_box("ok.txt", codec.compress(b"ok"))
                + pack_box("../escape.txt", codec.compress(b"nope"))
            )
            out = tmp / "out"
            with ArchiveReader(str(archive)) as r:
                with self.assertRaises(FormatError):
                    r.extract_all(str(out))
            self.assertFalse((tmp / "escape.txt").exists())
            self.assertFalse((out / "ok.txt").exists())

        self.run_with_tmpdir(scenario)

    def test_wrong_key_and_wrong_flag_are_crypto_errors(self):
        def scenario(tmp: Path):
            plain = tmp / "plain.pakd"
            plain.write_bytes(encode_entries([("a", b"a")]))
            with self.assertRaises(IntegrityError):
                ArchiveReader(str(plain), private_key=_key()).open()

            sealed = tmp / "sealed.pakd"
            sealed.write_bytes(seal(encode_entries([("a", b"a")], encrypted=True), _key().public_key()))
            with self.assertRaises(IntegrityError):
                ArchiveReader(str(sealed)).open()
            with self.assertRaises(KeyUnwrapError):
                ArchiveReader(str(sealed), private_key=RSA.generate(2048)).open()

            # flag says plain but the stream was sealed
            mislabeled = tmp / "mislabeled.pakd"
            mislabeled.write_bytes(seal(encode_entries([("a", b"a")]), _key().public_key()))
            with self.assertRaises(IntegrityError):
                ArchiveReader(str(mislabeled), private_key=_key()).open()

            # flag says encrypted but no envelope
            flagged = tmp / "flagged.pakd"
            flagged.write_bytes(encode_entries([("a", b"a")], encrypted=True))
            with self.assertRaises(IntegrityError):
                ArchiveReader(str(flagged)).open()

        self.run_with_tmpdir(scenario)

    def test_corrupt_archive_extracts_nothing(self):
        def scenario(tmp: Path):
            archive = tmp / "bad.pakd"
            archive.write_bytes(b"GARBAGE!" + b"\x00" * 32)
            out = tmp / "out"
            with self.assertRaises(FormatError):
                unpack_archive(UnpackConfig(archive=str(archive), outdir=str(out)))
            self.assertFalse(out.exists())

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
