"""Route export run directories on local disk."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..config import settings


class FileStorage:
    """Writes route exports under ``<data_root>/outputs/<day>/<prefix>_<time>``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.output_root = self.root / "outputs"
        self.output_root.mkdir(parents=True, exist_ok=True)

    def make_run_directory(self, prefix: str = "route", day: Optional[date] = None) -> Path:
        now = datetime.now(timezone.utc)
        day_dir = self.output_root / (day or now.date()).isoformat()
        path = day_dir / f"{prefix}_{now.strftime('%H%M%S%f')}"
        path.mkdir(parents=True, exist_ok=False)
        return path

    def write_json(self, path: Path, data: Any, *, indent: int | None = 2) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            # datetimes and dates are written as ISO strings
            json.dump(data, handle, ensure_ascii=False, indent=indent, default=_json_default)

    def write_geojson(self, path: Path, collection: dict) -> None:
        if collection.get("type") != "FeatureCollection":
            raise ValueError(f"Expected a GeoJSON FeatureCollection, got {collection.get('type')!r}.")
        self.write_json(path, collection, indent=None)

    def write_csv(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)
