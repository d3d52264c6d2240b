from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from typing import Callable, List, Optional


SkipCallback = Callable[[str, str], None]


@dataclass
class SourceFile:
    path: str  # archive path, POSIX separators, relative to the walked root
    fs_path: str

    def read(self) -> bytes:
        with open(self.fs_path, "rb") as fh:
            return fh.read()


def walk_files(root: str, *, on_skip: Optional[SkipCallback] = None) -> List[SourceFile]:
    """Enumerate regular files below ``root``, sorted by archive path.

    Directories produce no entries of their own. Symlinks are never followed;
    they and any special files are reported through ``on_skip(path, reason)``.
    """
    found: List[SourceFile] = []

    def _onerror(exc: OSError) -> None:
        raise exc

    for dirpath, dirnames, filenames in os.walk(root, onerror=_onerror):
        kept = []
        for d in dirnames:
            full = os.path.join(dirpath, d)
            if os.path.islink(full):
                if on_skip is not None:
                    on_skip(_rel(full, root), "symlink")
                continue
            kept.append(d)
        # prune symlink directories to avoid walking into them
        dirnames[:] = kept
        for f in filenames:
            full = os.path.join(dirpath, f)
            rel = _rel(full, root)
            st = os.lstat(full)
            if stat.S_ISLNK(st.st_mode):
                if on_skip is not None:
                    on_skip(rel, "symlink")
                continue
            if not stat.S_ISREG(st.st_mode):
                if on_skip is not None:
                    on_skip(rel, "special file")
                continue
            found.append(SourceFile(path=rel, fs_path=full))

    found.sort(key=lambda s: s.path)
    return found


def _rel(full: str, root: str) -> str:
    return os.path.relpath(full, start=root).replace(os.sep, "/")
