from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def atomic_write_json(path: PathLike, data: Any) -> None:
    """Write a JSON document atomically (temp file in the same dir + os.replace)."""
    p = Path(path)
    text = json.dumps(data, ensure_ascii=False, indent=2)
    ensure_dir(p.parent)
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", delete=False, dir=str(p.parent), suffix=".tmp"
    ) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    try:
        os.replace(tmp_name, p)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_json(path: PathLike) -> Any:
    with Path(path).open("r", encoding="utf-8") as f:
        return json.load(f)


def append_jsonl(path: PathLike, item: Dict[str, Any]) -> None:
    """Append a JSON-serializable dict as one line to a JSONL file."""
    try:
        line = json.dumps(item, ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize item to JSON: {e}") from e

    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_jsonl(path: PathLike) -> List[Dict[str, Any]]:
    """Rows of a JSONL file; a missing file is empty and bad lines are skipped."""
    p = Path(path)
    if not p.exists():
        return []
    rows: List[Dict[str, Any]] = []
    with p.open("r", encoding="utf-8") as f:
        for n, raw in enumerate(f, 1):
            if not raw.strip():
                continue
            try:
                rows.append(json.loads(raw))
            except json.JSONDecodeError as e:
                logger.warning("Skipping corrupt journal line %s in %s: %s", n, p, e)
    return rows
