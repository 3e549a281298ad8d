"""Aggregation: fold stored activities into per-athlete leaderboard summaries.

Summaries are recomputed from scratch on every run; nothing is carried over
between runs and the input records are never modified.
"""

import logging
import os
import time
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .identity import MetadataIndex, athlete_display, display_name, member_display, member_keys, resolve_key
from .normalize import resolve_field
from .utils import now_ms, parse_timestamp, round_half_up

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = os.getenv("LB_AGGREGATION_TIMEZONE", "Asia/Manila")

# Club admins write the local zone in several ways; PST here is Philippine time.
TIMEZONE_ALIASES = {
    "PH": "Asia/Manila",
    "PHT": "Asia/Manila",
    "PST": "Asia/Manila",
    "Philippines": "Asia/Manila",
}

WINDOW_DAYS = 7


def parse_start_date(date_str: Optional[str], tz: str = DEFAULT_TIMEZONE) -> Optional[int]:
    """Epoch seconds of local midnight on ``YYYY-MM-DD`` in zone *tz*.

    Unknown zones fall back to UTC; unparsable dates give ``None``.
    """
    if not date_str:
        return None
    try:
        day = datetime.strptime(str(date_str).strip()[:10], "%Y-%m-%d")
    except ValueError:
        return None
    try:
        zone = ZoneInfo(TIMEZONE_ALIASES.get(tz, tz))
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, using UTC", tz)
        zone = ZoneInfo("UTC")
    return int(day.replace(tzinfo=zone).timestamp())


def window_start(start_date: Optional[str] = None, tz: Optional[str] = None, now: Optional[float] = None) -> int:
    """Start of the aggregation window in epoch seconds.

    ``start_date`` (or ``LB_AGGREGATION_START_DATE``) when set and valid,
    otherwise one week before *now*.
    """
    date_str = start_date or os.getenv("LB_AGGREGATION_START_DATE")
    parsed = parse_start_date(date_str, tz or DEFAULT_TIMEZONE)
    if parsed is not None:
        return parsed
    if date_str:
        logger.warning("Ignoring unparsable aggregation start date %r", date_str)
    current = now if now is not None else time.time()
    return int(current - timedelta(days=WINDOW_DAYS).total_seconds())


def _empty() -> Dict:
    return {"name": "", "distance": 0, "count": 0, "longest": 0, "total_moving_time": 0, "elev_gain": 0}


def _finish(acc: Dict, stamp: int) -> Dict:
    distance = acc["distance"]
    return {
        "name": acc["name"],
        "distance": distance,
        "count": acc["count"],
        "longest": acc["longest"],
        "total_moving_time": acc["total_moving_time"],
        "avg_pace": round_half_up(acc["total_moving_time"] / (distance / 1000)) if distance > 0 else None,
        "elev_gain": acc["elev_gain"],
        "updated_at": stamp,
    }


def aggregate(
    records: Iterable[Dict],
    members: Optional[List[Dict]] = None,
    since: Optional[float] = None,
    now: Optional[int] = None,
) -> Dict[str, Dict]:
    """Per-athlete summaries keyed by identity key.

    Parameters
    ----------
    records : Iterable[Dict]
        Deduplicated activities. Records without a resolvable athlete are
        skipped.
    members : List[Dict], optional
        Known club members. Each appears first, in roster order, with a zero
        summary when no activity matched.
    since : float, optional
        Epoch seconds; activities starting earlier are left out. Activities
        without a start date are always counted.
    now : int, optional
        Epoch milliseconds stamped as ``updated_at``.

    Returns
    -------
    Dict[str, Dict]
        Insertion-ordered mapping of identity key to summary.
    """
    stamp = now if now is not None else now_ms()
    acc: Dict[str, Dict] = {}
    skipped = 0

    for record in records:
        if since is not None:
            started = parse_timestamp(record.get("start_date"))
            if started is not None and started.timestamp() < since:
                continue
        key = resolve_key(record)
        if not key:
            skipped += 1
            continue
        cur = acc.setdefault(key, _empty())
        distance = resolve_field("distance", record, stamp)
        cur["distance"] += distance
        cur["count"] += 1
        cur["longest"] = max(cur["longest"], distance)
        cur["total_moving_time"] += resolve_field("moving_time", record, stamp)
        cur["elev_gain"] += resolve_field("elevation_gain", record, stamp)
        if not cur["name"]:
            cur["name"] = athlete_display(record)

    if skipped:
        logger.debug("Skipped %d activities without an athlete", skipped)

    out: Dict[str, Dict] = {}
    consumed = set()
    for member in members or []:
        keys = member_keys(member)
        if not keys or keys[0] in out:
            continue
        hit = next((k for k in keys if k in acc and k not in consumed), None)
        cur = acc[hit] if hit else _empty()
        if hit:
            consumed.add(hit)
        summary = _finish(cur, stamp)
        summary["name"] = summary["name"] or member_display(member)
        out[keys[0]] = summary

    for key, cur in acc.items():
        if key in consumed or key in out:
            continue
        out[key] = _finish(cur, stamp)

    logger.info("Aggregated %d athletes (%d roster members)", len(out), len(members or []))
    return out


def leaderboard_rows(summaries: Dict[str, Dict], meta_index: Optional[MetadataIndex] = None) -> List[Dict]:
    """Flatten summaries into ``{athlete_key, athlete_display, nickname, goal, summary}`` rows."""
    rows: List[Dict] = []
    for key, summary in summaries.items():
        meta = meta_index.lookup(key) if meta_index is not None else None
        rows.append(
            {
                "athlete_key": key,
                "athlete_display": display_name(summary.get("name"), meta),
                "nickname": meta.get("nickname") if meta else None,
                "goal": meta.get("goal", 0) if meta else 0,
                "summary": summary,
            }
        )
    return rows


def rank_rows(rows: List[Dict]) -> List[Dict]:
    """Rows ordered by total distance, longest first (stable for ties)."""
    return sorted(rows, key=lambda r: r["summary"].get("distance", 0), reverse=True)


__all__ = ["aggregate", "leaderboard_rows", "rank_rows", "parse_start_date", "window_start"]
