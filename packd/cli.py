from __future__ import annotations

import os
import sys
import time
import argparse
from typing import List, Optional

from packd.config import PackConfig, UnpackConfig
from packd.constants import DEFAULT_COMPRESSION_LEVEL, DEFAULT_KEYGEN_BITS, DEFAULT_OUTPUT_NAME
from packd.errors import PackdError
from packd.keys import generate_keypair, load_private_key
from packd.reader import ArchiveReader, unpack_archive
from packd.writer import pack_directory


def _warn_skip(path: str, reason: str) -> None:
    print(f"Warning: skipping {path} ({reason})", file=sys.stderr)


def cmd_pack(
    input_dir: str,
    output: str = DEFAULT_OUTPUT_NAME,
    *,
    encrypt: bool = False,
    public_key: Optional[str] = None,
    level: int = DEFAULT_COMPRESSION_LEVEL,
    jobs: int = 1,
    quiet: bool = False,
) -> bool:
    """Pack a directory into a .pakd archive.

    Args:
        input_dir: Directory whose regular files are stored.
        output: Path of the archive to write.
        encrypt: Seal the archive for the holder of ``public_key``.
        public_key: PEM public key file; required with ``encrypt``.
        level: zstd compression level.
        jobs: Number of compression threads.
    """
    if not os.path.isdir(input_dir):
        print(f"Error: Directory '{input_dir}' does not exist", file=sys.stderr)
        sys.exit(2)

    def _progress(src, size):
        if not quiet:
            print(f"    packing: {src.path} ({size} bytes)")

    t0 = time.time()
    stats = pack_directory(
        PackConfig(
            root=input_dir,
            output=output,
            compression_level=level,
            encrypt=encrypt,
            public_key_path=public_key,
            jobs=jobs,
        ),
        on_skip=_warn_skip,
        on_entry=_progress,
    )
    dt = max(0.000001, time.time() - t0)
    mib = stats.raw_bytes / (1024.0 * 1024.0)
    ratio = (stats.stored_bytes / stats.raw_bytes * 100.0) if stats.raw_bytes else 100.0
    print(
        f"Done: {stats.files} files; {mib:.2f} MiB in {dt:.1f}s; "
        f"stored {ratio:.1f}%{' (encrypted)' if encrypt else ''}"
    )
    print(f"Successfully created packd archive: {output}")
    return True


def cmd_unpack(
    archive: str,
    *,
    outdir: str = ".",
    private_key: Optional[str] = None,
    passphrase: Optional[str] = None,
    quiet: bool = False,
) -> bool:
    """Unpack a .pakd archive into ``outdir``."""
    if not os.path.isfile(archive):
        print(f"Error: File '{archive}' does not exist", file=sys.stderr)
        sys.exit(2)

    def _progress(path, size):
        if not quiet:
            print(f"  inflating: {path}")

    written = unpack_archive(
        UnpackConfig(archive=archive, outdir=outdir, private_key_path=private_key, passphrase=passphrase),
        on_entry=_progress,
    )
    print(f"Done: {len(written)} files")
    print(f"Successfully extracted archive to: {outdir}")
    return True


def cmd_list(archive: str, *, private_key: Optional[str] = None, passphrase: Optional[str] = None) -> bool:
    """List archive entries with their stored (compressed) sizes."""
    if not os.path.isfile(archive):
        print(f"Error: File '{archive}' does not exist", file=sys.stderr)
        sys.exit(2)
    key = load_private_key(private_key, passphrase) if private_key else None
    with ArchiveReader(archive, private_key=key) as r:
        for box in r.boxes():
            print(f"{len(box.data)}\t{box.path}")
    return True


def cmd_keygen(private_out: str, public_out: str, *, bits: int = DEFAULT_KEYGEN_BITS, passphrase: Optional[str] = None) -> bool:
    """Generate an RSA key pair for sealing archives."""
    generate_keypair(private_out, public_out, bits=bits, passphrase=passphrase)
    print(f"Wrote private key: {private_out}")
    print(f"Wrote public key: {public_out}")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="packd",
        description="packd .pakd archive tool",
        epilog=(
            "When encrypted, the whole archive is sealed with AES-256-GCM under a per-archive key "
            "wrapped with RSA-OAEP."
        ),
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Pack a directory")
    ap_pack.add_argument("input", help="Input directory")
    ap_pack.add_argument("-o", "--output", default=DEFAULT_OUTPUT_NAME, help=f"Output .pakd path (default {DEFAULT_OUTPUT_NAME})")
    ap_pack.add_argument("-e", "--encrypt", action="store_true", help="Enable encryption (requires --public-key)")
    ap_pack.add_argument("--public-key", help="Recipient RSA public key (PEM)")
    ap_pack.add_argument("--level", type=int, default=DEFAULT_COMPRESSION_LEVEL, help=f"zstd level 1-22 (default {DEFAULT_COMPRESSION_LEVEL})")
    ap_pack.add_argument("--jobs", "-j", type=int, default=1, help="Compression threads (default 1)")
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_unpack = sub.add_parser("unpack", help="Unpack an archive")
    ap_unpack.add_argument("archive", help="Archive path")
    ap_unpack.add_argument("-d", "--outdir", default=".", help="Output directory")
    ap_unpack.add_argument("--private-key", help="RSA private key (PEM) for encrypted archives")
    ap_unpack.add_argument("--passphrase", help="Passphrase protecting the private key")
    ap_unpack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--private-key", help="RSA private key (PEM) for encrypted archives")
    ap_list.add_argument("--passphrase", help="Passphrase protecting the private key")

    ap_keygen = sub.add_parser("keygen", help="Generate an RSA key pair")
    ap_keygen.add_argument("private_out", help="Private key output path")
    ap_keygen.add_argument("public_out", help="Public key output path")
    ap_keygen.add_argument("--bits", type=int, default=DEFAULT_KEYGEN_BITS, help=f"RSA modulus size (default {DEFAULT_KEYGEN_BITS})")
    ap_keygen.add_argument("--passphrase", help="Encrypt the private key with this passphrase")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "pack":
            if args.encrypt and not args.public_key:
                print("Error: --encrypt requires --public-key", file=sys.stderr)
                sys.exit(2)
            cmd_pack(
                args.input,
                args.output,
                encrypt=args.encrypt,
                public_key=args.public_key,
                level=args.level,
                jobs=args.jobs,
                quiet=args.quiet,
            )
        elif args.cmd == "unpack":
            cmd_unpack(args.archive, outdir=args.outdir, private_key=args.private_key, passphrase=args.passphrase, quiet=args.quiet)
        elif args.cmd == "list":
            cmd_list(args.archive, private_key=args.private_key, passphrase=args.passphrase)
        elif args.cmd == "keygen":
            cmd_keygen(args.private_out, args.public_out, bits=args.bits, passphrase=args.passphrase)
        else:
            raise RuntimeError("Unknown command")
    except KeyboardInterrupt:
        print("Error: interrupted; partial output discarded", file=sys.stderr)
        sys.exit(130)
    except (PackdError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
