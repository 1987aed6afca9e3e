"""Helper functions for presenting cache contents."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Sequence


def to_mb(size: int) -> float:
    """Convert a byte count to megabytes, rounding halves up to one decimal place."""

    return math.floor(size / 100_000 + 0.5) / 10


def display_paths(files: Sequence[Path], root: Path) -> str:
    fragments: list[str] = []
    for path in files:
        try:
            fragments.append(str(path.relative_to(root)))
        except ValueError:
            fragments.append(str(path))
    return ", ".join(fragments)

