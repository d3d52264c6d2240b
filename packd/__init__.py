"""
packd — single-file directory archives with optional hybrid encryption.

Features:

- Fixed little-endian framing: an 8-byte marker, an 8-byte header and one box
  (path length, compressed length, path, zstd payload) per regular file.
- Deterministic output: files are stored in sorted relative-path order.
- Optional whole-archive sealing: AES-256-GCM under a fresh per-archive key,
  the key wrapped with RSA-OAEP(SHA-256) for the recipient.
- Bounds-checked sequential decoding; truncated or forged length fields are
  reported as format errors instead of being trusted.

The on-disk layout lives in packd/constants.py (struct formats) and
packd/archive.py (encoder and decoder).
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "archive",
    "encryption",
    "keys",
    "writer",
    "reader",
]

# Importable programmatic API is available via packd.writer/packd.reader
# (pack_directory/unpack_archive take a config object) and the CLI functions
# in packd.cli (cmd_pack/cmd_unpack).
