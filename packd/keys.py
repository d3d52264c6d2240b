from __future__ import annotations

import os
from typing import Optional, Tuple

from Cryptodome.PublicKey import RSA

from .constants import DEFAULT_KEYGEN_BITS, MIN_KEYGEN_BITS
from .errors import KeyLoadError


def _read_key_file(path: str) -> bytes:
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError as e:
        raise KeyLoadError(f"failed to read key file: {e.strerror or e}", path=path) from e


def _import(data: bytes, path: str, passphrase: Optional[str]) -> RSA.RsaKey:
    try:
        return RSA.import_key(data, passphrase=passphrase)
    except (ValueError, IndexError, TypeError) as e:
        raise KeyLoadError(f"failed to parse RSA key: {e}", path=path) from e


def load_public_key(path: str) -> RSA.RsaKey:
    """Load an RSA public key (PEM or DER).

    Both ``PUBLIC KEY`` and ``RSA PUBLIC KEY`` encodings are accepted. A private
    key file is reduced to its public half.
    """
    key = _import(_read_key_file(path), path, None)
    if key.has_private():
        key = key.public_key()
    return key


def load_private_key(path: str, passphrase: Optional[str] = None) -> RSA.RsaKey:
    key = _import(_read_key_file(path), path, passphrase)
    if not key.has_private():
        raise KeyLoadError("file holds a public key; a private key is required", path=path)
    return key


def generate_keypair(
    private_path: str,
    public_path: str,
    *,
    bits: int = DEFAULT_KEYGEN_BITS,
    passphrase: Optional[str] = None,
) -> Tuple[RSA.RsaKey, RSA.RsaKey]:
    """Generate an RSA key pair and write both halves as PEM files.

    The private key file is created with mode 0600. With ``passphrase`` the
    private key is stored as encrypted PKCS#8.
    """
    if bits < MIN_KEYGEN_BITS:
        raise ValueError(f"RSA key size must be at least {MIN_KEYGEN_BITS} bits")
    key = RSA.generate(bits)
    if passphrase:
        priv_pem = key.export_key(
            format="PEM",
            passphrase=passphrase,
            pkcs=8,
            protection="scryptAndAES256-CBC",
        )
    else:
        priv_pem = key.export_key(format="PEM")
    pub = key.public_key()
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as fh:
        fh.write(priv_pem)
    with open(public_path, "wb") as fh:
        fh.write(pub.export_key(format="PEM"))
    return key, pub
