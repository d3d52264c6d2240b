import struct


# Magic
MARKER = bytes([0x3C, 0x21, 0x50, 0x41, 0x4B, 0x44, 0x21, 0x3E])  # 8 bytes: "<!PAKD!>"

# Archive header (fixed 8 bytes)
# struct: <B7s
#  - encryption flag u8
#  - reserved[7] (zero on write, ignored on read)
HEADER_STRUCT = struct.Struct("<B7s")
HEADER_RESERVED = b"\x00" * 7

FLAG_PLAIN = 0x00
FLAG_ENCRYPTED = 0x01

# Box header (fixed 10 bytes)
# struct: <HQ
#  - path_len u16
#  - data_len u64 (compressed payload length)
BOX_HEADER_STRUCT = struct.Struct("<HQ")

PREAMBLE_SIZE = len(MARKER) + HEADER_STRUCT.size
MAX_PATH_BYTES = 0xFFFF


# Envelope layout: [u32 wrapped-key length][wrapped key][nonce][ciphertext][tag]
ENVELOPE_LEN_STRUCT = struct.Struct("<I")
SYMMETRIC_KEY_SIZE = 32  # AES-256
GCM_NONCE_SIZE = 12
GCM_TAG_SIZE = 16
OAEP_HASH_SIZE = 32  # SHA-256

MIN_KEYGEN_BITS = 2048
DEFAULT_KEYGEN_BITS = 3072


# zstd levels; the library default (3) favours speed over ratio
DEFAULT_COMPRESSION_LEVEL = 11
MIN_COMPRESSION_LEVEL = 1
MAX_COMPRESSION_LEVEL = 22

DEFAULT_OUTPUT_NAME = "output.pakd"
