"""
plainsub.io - Atomic text file writes.

Output files are always either absent or complete.
"""

from __future__ import annotations

import tempfile
from pathlib import Path


def write_text(path: Path, content: str) -> None:
    """Write text file atomically.

    Writes to a temp file in the destination directory first, then renames
    over the destination.

    Args:
        path: Destination path
        content: Text content to write
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        suffix=".tmp",
        newline="",
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(content)
        except Exception:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
