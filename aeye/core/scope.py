from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def resolve_path(path: str | Path, root: Optional[Path]) -> Path:
    # Lexical only: symlinks are not followed so the decision is stable for paths that do not exist yet.
    p = Path(path)
    if not p.is_absolute():
        base = root if root is not None else Path.cwd()
        p = base / p
    return Path(os.path.normpath(str(p)))


def is_within_root(path: Path, root: Path) -> bool:
    p = str(path)
    r = str(root)
    return p == r or p.startswith(r.rstrip(os.sep) + os.sep)
