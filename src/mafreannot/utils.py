from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, TextIO

logger = logging.getLogger(__name__)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def norm_col(name: str) -> str:
    """Normalize a column name for case-insensitive lookups."""
    return name.strip().lower()


def split_fields(line: str) -> List[str]:
    """Split a tab-delimited line, stripping whitespace and CR/LF from each field."""
    return [f.strip() for f in line.rstrip("\r\n").split("\t")]


def is_nonempty_file(path: str | Path) -> bool:
    p = Path(path)
    return p.is_file() and p.stat().st_size > 0


@contextmanager
def atomic_write(path: str | Path) -> Iterator[TextIO]:
    """Write to a sibling temporary file, then move it over ``path``.

    Readers never observe a partially written file. On error the temporary
    file is removed and ``path`` is left untouched. An existing ``path`` keeps
    its permission bits.
    """
    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=target.name + ".", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "wt", encoding="utf-8", newline="") as fh:
            yield fh
        if target.exists():
            shutil.copymode(target, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.debug("Replaced %s", target)
