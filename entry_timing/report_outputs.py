"""Utilities for reading the decision dataset and writing JSON reports with an index."""
from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import numpy as np


logger = logging.getLogger(__name__)

REPORTS_SUBDIR = "reports"
INDEX_FILENAME = "index.json"


class DatasetFormatError(ValueError):
    """Raised when a dataset line is not a JSON object."""

    def __init__(self, path: Path, line_number: int, reason: str) -> None:
        super().__init__(f"{path}:{line_number}: {reason}")
        self.path = path
        self.line_number = line_number


def _timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_camel_dict(obj: Any) -> Dict[str, Any]:
    """Flatten a dataclass into a dict keyed by camelCase field names."""
    return {camel_case(f.name): getattr(obj, f.name) for f in fields(obj)}


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    if is_dataclass(value) and hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Read one JSON object per line; blank lines are skipped, anything else malformed aborts."""
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as fh:
        for line_number, line in enumerate(fh, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                row = json.loads(text)
            except json.JSONDecodeError as exc:
                raise DatasetFormatError(path, line_number, exc.msg) from exc
            if not isinstance(row, dict):
                raise DatasetFormatError(path, line_number, "expected a JSON object")
            rows.append(row)
    logger.info("Read %d rows from %s", len(rows), path)
    return rows


def write_jsonl(path: Path, rows: Iterable[Mapping[str, Any]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        for row in rows:
            fh.write(json.dumps(row, default=_json_default))
            fh.write("\n")
    return path


def write_json(path: Path, payload: Mapping[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=_json_default)
        fh.write("\n")
    return path


def _load_index(index_path: Path) -> Dict[str, Any]:
    if index_path.exists():
        with index_path.open("r", encoding="utf-8") as fh:
            try:
                return json.load(fh)
            except json.JSONDecodeError:
                return {"generated_at": None, "entries": []}
    return {"generated_at": None, "entries": []}


def _register_entry(output_dir: Path, entry: Dict[str, Any]) -> None:
    index_path = output_dir / REPORTS_SUBDIR / INDEX_FILENAME
    index = _load_index(index_path)
    entries = [item for item in index.get("entries", []) if item.get("id") != entry["id"]]
    entries.append(entry)
    entries.sort(key=lambda item: item.get("stage", ""))
    index["entries"] = entries
    index["generated_at"] = _timestamp()
    write_json(index_path, index)


def save_report(
    output_dir: Path,
    *,
    stage: str,
    filename: str,
    payload: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write a pretty-printed report and register it in the output directory's index."""
    report = {"generatedAt": _timestamp(), **payload}
    path = write_json(output_dir / filename, report)
    _register_entry(
        output_dir,
        {
            "id": f"{stage}::{filename}",
            "stage": stage,
            "path": filename,
            "updated_at": report["generatedAt"],
            "metadata": metadata or {},
        },
    )
    logger.info("Wrote %s report: %s", stage, path)
    return path
