"""Flat on-disk store holding downloaded asset bytes keyed by asset name."""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

from .errors import NotFoundError

DEFAULT_CACHE_DIR = Path("tmp")
PARTIAL_SUFFIX = ".part"


class DiskCacheStore:
    """Store complete asset files in a single scratch directory.

    Each writer gets its own ``<name>.<random>.part`` file, renamed onto
    ``<name>`` only after the handle has been closed cleanly, so a file named
    after an asset is always a complete download.
    """

    def __init__(self, root: Path = DEFAULT_CACHE_DIR) -> None:
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        if not name or name in {".", ".."} or "/" in name or "\\" in name:
            raise ValueError(f"Invalid asset name {name!r}")
        if name.endswith(PARTIAL_SUFFIX):
            raise ValueError(f"Asset names may not end with {PARTIAL_SUFFIX!r}: {name!r}")
        root = self.root.resolve()
        target = (root / name).resolve()
        if target.parent != root:
            raise ValueError(f"Asset name {name!r} escapes the cache directory")
        return target

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def open_for_read(self, name: str) -> BinaryIO:
        """Return an open binary handle; the caller must close it."""

        path = self.path_for(name)
        try:
            return path.open("rb")
        except FileNotFoundError as exc:
            raise NotFoundError(f"{name} is not in the disk cache") from exc

    def read_bytes(self, name: str) -> bytes:
        with self.open_for_read(name) as handle:
            return handle.read()

    @contextmanager
    def open_for_write(self, name: str) -> Iterator[BinaryIO]:
        """Yield a handle whose contents replace ``name`` once the block exits cleanly."""

        destination = self.path_for(name)
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=destination.parent, prefix=f"{name}.", suffix=PARTIAL_SUFFIX)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                yield handle
            temp_path.replace(destination)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    def remove(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)

    def names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            path.name
            for path in self.root.iterdir()
            if path.is_file() and not path.name.endswith(PARTIAL_SUFFIX)
        )

    def size_of(self, name: str) -> int:
        try:
            return self.path_for(name).stat().st_size
        except FileNotFoundError as exc:
            raise NotFoundError(f"{name} is not in the disk cache") from exc

    def clear(self) -> None:
        """Remove the whole cache directory. Missing directories are ignored."""

        if not self.root.exists():
            return
        shutil.rmtree(self.root)


__all__ = ["DEFAULT_CACHE_DIR", "DiskCacheStore", "PARTIAL_SUFFIX"]
