from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_COMPRESSION_LEVEL, DEFAULT_OUTPUT_NAME


@dataclass
class PackConfig:
    """Everything :func:`packd.writer.pack_directory` needs; no global state."""

    root: str
    output: str = DEFAULT_OUTPUT_NAME
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    encrypt: bool = False
    public_key_path: Optional[str] = None
    jobs: int = 1
    cancel: Optional[threading.Event] = None


@dataclass
class UnpackConfig:
    archive: str
    outdir: str = "."
    private_key_path: Optional[str] = None
    passphrase: Optional[str] = None
