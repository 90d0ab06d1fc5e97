"""
Atomic JSON file writes.

Every file the reflector owns (ledger, reports) is written with the
write-to-temp-then-rename pattern so readers never observe a partial file.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def atomic_write_json(target_path: Path, data: Any) -> None:
    """
    Atomically replace target_path with the JSON encoding of data.

    The temp file lives in the target's directory so the final rename never
    crosses a filesystem boundary. On any failure the temp file is removed
    and the previous target contents are left untouched.
    """
    target_path = Path(target_path)
    target_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix=f".{target_path.stem}_",
        dir=target_path.parent,
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, target_path)
    except BaseException:
        # Clean up temp file on error
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


__all__ = ["atomic_write_json"]
