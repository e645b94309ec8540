"""
Atomic report writers for deployment logs.

- ensure parent directory exists
- write to tmp file, fsync, os.replace
- best-effort fsync on the directory
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Union


def _fsync_dir(directory: Path) -> None:
    try:
        dirfd = os.open(str(directory), os.O_DIRECTORY)
    except (OSError, AttributeError):
        # O_DIRECTORY is POSIX-only
        return
    try:
        os.fsync(dirfd)
    except OSError:
        pass
    finally:
        os.close(dirfd)


def write_text_atomic(path: Union[str, Path], data: str) -> Path:
    """Atomically write UTF-8 text to path."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")

    with open(tmp, 'w', encoding='utf-8', newline='\n') as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())

    os.replace(tmp, p)
    _fsync_dir(p.parent)
    return p


def write_json_atomic(path: Union[str, Path], payload: Dict[str, Any]) -> Path:
    """Write deterministic JSON to path atomically.

    - sort_keys, 2-space indent, trailing \\n
    - non-ASCII kept as-is (UTF-8)
    """
    data = json.dumps(payload or {}, ensure_ascii=False, sort_keys=True, indent=2) + "\n"
    return write_text_atomic(path, data)
