"""JSON cache for raw Strava payloads.

Each feed (endpoint plus its parameters) is stored with the time it was
fetched and reused until it is older than ``TTL_MINUTES``, so re-running the
pipeline a few times in a row does not spend API quota on identical pages.
Club feeds change during the day, hence minutes rather than a daily bucket.

The file layout is::

    {
        "club_activities:12345:after=1730390400": {"stored_at": 1730400000, "items": [...]},
        "club_members:12345": {"stored_at": 1730400000, "items": [...]}
    }
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CATALOG_PATH = Path(os.getenv("LB_CACHE_PATH", str(Path("meta") / "strava_cache.json")))

TTL_MINUTES = int(os.getenv("LB_CACHE_TTL_MINUTES", "60"))

# Set LB_SKIP_CACHE=1 to always hit the API (force-refresh)
SKIP_CACHE = os.getenv("LB_SKIP_CACHE", "0").lower() in {"1", "true", "yes"}


def _read() -> Dict[str, Dict]:
    if not CATALOG_PATH.exists():
        return {}
    try:
        return json.loads(CATALOG_PATH.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        logger.warning("Unreadable cache at %s, starting empty", CATALOG_PATH)
        return {}


def _fresh(entry: Dict, now: float) -> bool:
    return now - entry.get("stored_at", 0) < TTL_MINUTES * 60


def get_cached(feed: str) -> Optional[List[Dict]]:
    """Items cached for *feed*, or ``None`` when missing, stale or disabled."""
    if SKIP_CACHE:
        return None
    entry = _read().get(feed)
    if not entry or not _fresh(entry, time.time()):
        return None
    return entry.get("items")


def set_cached(feed: str, data: List[Dict]) -> None:
    """Store *data* for *feed*; stale entries of other feeds are dropped."""
    if SKIP_CACHE:
        return
    now = time.time()
    catalog = {k: v for k, v in _read().items() if _fresh(v, now)}
    catalog[feed] = {"stored_at": now, "items": data}
    CATALOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    CATALOG_PATH.write_text(json.dumps(catalog, ensure_ascii=False, indent=2), encoding="utf-8")


def invalidate(feed: Optional[str] = None) -> None:
    """Forget *feed*, or every feed when none is given."""
    if not CATALOG_PATH.exists():
        return
    catalog = {} if feed is None else {k: v for k, v in _read().items() if k != feed}
    CATALOG_PATH.write_text(json.dumps(catalog, ensure_ascii=False, indent=2), encoding="utf-8")


__all__ = ["get_cached", "set_cached", "invalidate", "TTL_MINUTES"]
