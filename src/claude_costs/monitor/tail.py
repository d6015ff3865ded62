"""Reading the end of a growing log file."""

from __future__ import annotations

from collections import deque
from pathlib import Path


def read_last_lines(file_path: Path, num_lines: int) -> list[str]:
    """Return the last ``num_lines`` non-empty lines of a file.

    Scans forward through the whole file keeping only a bounded window, so
    memory stays at ``num_lines`` lines regardless of file size.
    """
    window: deque[str] = deque(maxlen=num_lines)
    with open(file_path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.rstrip("\r\n")
            if line.strip():
                window.append(line)
    return list(window)


def new_lines(previous: list[str], current: list[str]) -> list[str]:
    """Lines of ``current`` that were not already seen in ``previous``.

    Both are tails of the same append-only file, so ``current`` is some
    suffix of ``previous`` followed by appended lines. The longest such
    overlap is assumed; with no overlap every line in ``current`` is new.
    """
    if not previous:
        return list(current)
    for start in range(len(previous)):
        overlap = previous[start:]
        if len(overlap) <= len(current) and current[: len(overlap)] == overlap:
            return current[len(overlap):]
    return list(current)
