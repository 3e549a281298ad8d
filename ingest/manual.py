"""Manual activity imports: admin CSV uploads and JSON exports of the store.

CSV columns follow the template handed to club admins::

    athlete_id,athlete_name,distance,moving_time,start_date,type,name,elevation_gain

``distance`` and ``elevation_gain`` are meters, ``moving_time`` seconds and
``start_date`` ``YYYY-MM-DD`` (or a full ISO timestamp).  Empty cells are
dropped rather than passed on as NaN, so the normaliser's defaults apply.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Dict, List, Union

import pandas as pd

logger = logging.getLogger(__name__)

SOURCE_TAG = "manual"

CSV_COLUMNS = [
    "athlete_id",
    "athlete_name",
    "distance",
    "moving_time",
    "start_date",
    "type",
    "name",
    "elevation_gain",
]


def read_csv(path: Union[str, Path]) -> List[Dict]:
    """Read an admin CSV upload into raw activity dicts tagged ``source="manual"``."""
    df = pd.read_csv(path, dtype={"athlete_id": str, "start_date": str, "name": str, "athlete_name": str})
    df.columns = [str(c).strip().lower() for c in df.columns]

    unknown = set(df.columns) - set(CSV_COLUMNS)
    if unknown:
        logger.warning("Ignoring unknown CSV columns: %s", ", ".join(sorted(unknown)))

    created_at = int(time.time() * 1000)
    records: List[Dict] = []
    for row in df.to_dict(orient="records"):
        record = {
            k: (v.strip() if isinstance(v, str) else v)
            for k, v in row.items()
            if k in CSV_COLUMNS and not pd.isna(v)
        }
        if not record:
            continue
        record["source"] = SOURCE_TAG
        record["created_at"] = created_at
        records.append(record)

    logger.info("Read %d manual activities from %s", len(records), path)
    return records


def load_export(path: Union[str, Path]) -> List[Dict]:
    """Load a ``{"raw_activities": [...]}`` export (or a bare list) of activities."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("raw_activities") or []
    records = [item for item in payload if isinstance(item, dict)]
    logger.info("Loaded %d activities from export %s", len(records), path)
    return records


__all__ = ["read_csv", "load_export", "CSV_COLUMNS"]
