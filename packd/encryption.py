"""Hybrid RSA-OAEP / AES-256-GCM envelope backed by PyCryptodomex.

A fresh 32-byte AES key is generated per call and only that key is wrapped
under the recipient's RSA public key; the payload itself is encrypted with
AES-GCM. Serialized form (little endian)::

    [u32 wrapped-key length][wrapped key][nonce (12)][ciphertext][tag (16)]

The envelope knows nothing about archive framing and operates on opaque
byte buffers.
"""

from __future__ import annotations

from Cryptodome.Cipher import AES, PKCS1_OAEP
from Cryptodome.Hash import SHA256
from Cryptodome.PublicKey import RSA
from Cryptodome.Random import get_random_bytes

from .constants import (
    ENVELOPE_LEN_STRUCT,
    SYMMETRIC_KEY_SIZE,
    GCM_NONCE_SIZE,
    GCM_TAG_SIZE,
    OAEP_HASH_SIZE,
)
from .errors import (
    IntegrityError,
    KeyLoadError,
    KeyTooLargeError,
    KeyUnwrapError,
    LengthMismatchError,
)


def max_wrap_payload(key: RSA.RsaKey) -> int:
    """Largest message RSA-OAEP(SHA-256) can wrap under ``key``."""
    return key.size_in_bytes() - 2 * OAEP_HASH_SIZE - 2


def _oaep(key: RSA.RsaKey):
    return PKCS1_OAEP.new(key, hashAlgo=SHA256)


def wrap_key(sym_key: bytes, public_key: RSA.RsaKey) -> bytes:
    limit = max_wrap_payload(public_key)
    if len(sym_key) > limit:
        raise KeyTooLargeError(
            f"symmetric key of {len(sym_key)} bytes exceeds RSA-OAEP limit of {max(limit, 0)} bytes "
            f"for a {public_key.size_in_bits()}-bit key"
        )
    return _oaep(public_key).encrypt(sym_key)


def unwrap_key(wrapped: bytes, private_key: RSA.RsaKey) -> bytes:
    if not private_key.has_private():
        raise KeyLoadError("a private key is required to open an envelope")
    try:
        sym_key = _oaep(private_key).decrypt(wrapped)
    except (ValueError, TypeError) as e:
        raise KeyUnwrapError(f"failed to unwrap archive key: {e}") from e
    if len(sym_key) != SYMMETRIC_KEY_SIZE:
        raise KeyUnwrapError(f"unwrapped key has unexpected size {len(sym_key)}")
    return sym_key


def seal(plaintext: bytes, public_key: RSA.RsaKey) -> bytes:
    """Encrypt ``plaintext`` for the holder of ``public_key``."""
    # Size check runs inside wrap_key, before any symmetric work
    sym_key = get_random_bytes(SYMMETRIC_KEY_SIZE)
    wrapped = wrap_key(sym_key, public_key)
    nonce = get_random_bytes(GCM_NONCE_SIZE)
    cipher = AES.new(sym_key, AES.MODE_GCM, nonce=nonce, mac_len=GCM_TAG_SIZE)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return ENVELOPE_LEN_STRUCT.pack(len(wrapped)) + wrapped + nonce + ciphertext + tag


def open_envelope(envelope: bytes, private_key: RSA.RsaKey) -> bytes:
    """Reverse :func:`seal`; returns the original plaintext."""
    hdr = ENVELOPE_LEN_STRUCT.size
    if len(envelope) < hdr:
        raise LengthMismatchError("envelope too short for key length prefix", offset=0)
    (key_len,) = ENVELOPE_LEN_STRUCT.unpack_from(envelope, 0)
    if key_len > len(envelope) - hdr:
        raise LengthMismatchError(
            f"wrapped key length {key_len} exceeds {len(envelope) - hdr} remaining bytes", offset=0
        )
    wrapped = envelope[hdr : hdr + key_len]
    body = hdr + key_len
    if len(envelope) - body < GCM_NONCE_SIZE + GCM_TAG_SIZE:
        raise LengthMismatchError("envelope too short for nonce and tag", offset=body)

    sym_key = unwrap_key(wrapped, private_key)

    nonce = envelope[body : body + GCM_NONCE_SIZE]
    ciphertext = envelope[body + GCM_NONCE_SIZE : -GCM_TAG_SIZE]
    tag = envelope[-GCM_TAG_SIZE:]
    cipher = AES.new(sym_key, AES.MODE_GCM, nonce=nonce, mac_len=GCM_TAG_SIZE)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as e:
        raise IntegrityError("envelope authentication failed") from e


__all__ = [
    "max_wrap_payload",
    "wrap_key",
    "unwrap_key",
    "seal",
    "open_envelope",
]
