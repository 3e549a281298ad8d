"""Batch duplicate cleanup over the whole stored activity set.

The per-insert path deliberately creates a new record whenever a match is
not definitive, so duplicates accumulate.  This pass groups the full set with
a coarser key than the matcher uses (athlete, day, distance bucket) and picks
one survivor per group.

It only *plans*: ``cleanup`` returns groups with a ``keep`` and a ``delete``
list; nothing is removed until ``apply_cleanup`` is called with that plan.
"""

import logging
import math
import os
from typing import Dict, Iterable, List, NamedTuple, Optional

from .identity import resolve_key
from .matching import provider_of
from .store import WriteBatch
from .utils import to_int, to_number

logger = logging.getLogger(__name__)

# Distance bucket in meters. Observed settings are 1 and 3.5.
DEFAULT_ROUND_UNIT = float(os.getenv("LB_CLEANUP_ROUND_UNIT", "1"))

AUTHORITATIVE_PROVIDER = "strava"
TIMESTAMP_FIELDS = ("created_at", "fetched_at", "updated_at")


class CleanupGroup(NamedTuple):
    key: str
    records: List[Dict]
    keep: Dict
    delete: List[Dict]


def round_to_unit(value, unit: float) -> float:
    """Round *value* to the nearest multiple of *unit* (halves go up)."""
    num = to_number(value)
    if not unit:
        return num
    return math.floor(num / unit + 0.5) * unit


def _date_part(record: Dict, date_only: bool) -> str:
    value = str(record.get("start_date") or record.get("start_date_local") or "")
    return value[:10] if date_only else value


def _fmt(num: float) -> str:
    return f"{num:.3f}".rstrip("0").rstrip(".")


def group_key(record: Dict, round_unit: float = DEFAULT_ROUND_UNIT, date_only: bool = True) -> str:
    """Grouping key: athlete | start day (or full start) | distance bucket.

    Undated records also carry moving time and title, otherwise every undated
    run of similar length by one athlete would fall into a single group.
    """
    identity = resolve_key(record, prefer_name=True) or ""
    date = _date_part(record, date_only)
    parts = [identity, date, _fmt(round_to_unit(record.get("distance"), round_unit))]
    if not date:
        parts += [str(to_int(record.get("moving_time"))), str(record.get("name") or "")]
    return "|".join(" ".join(p.split()).lower() for p in parts)


def exact_duplicate_key(record: Dict) -> str:
    """Exact signature: athlete | title | distance (0.1 m) | moving | elapsed | elevation (0.1 m)."""
    parts = [
        resolve_key(record, prefer_name=True) or "",
        str(record.get("name") or ""),
        f"{round_to_unit(record.get('distance'), 0.1):.1f}",
        str(to_int(record.get("moving_time"))),
        str(to_int(record.get("elapsed_time"))),
        f"{round_to_unit(record.get('elevation_gain', record.get('total_elevation_gain')), 0.1):.1f}",
    ]
    return "|".join(" ".join(p.split()).lower() for p in parts)


def _timestamp(record: Dict) -> float:
    for field in TIMESTAMP_FIELDS:
        value = record.get(field)
        if value:
            return to_number(value, default=math.inf)
    return math.inf


def choose_keep(group: List[Dict]) -> Dict:
    """Pick the survivor of a duplicate group.

    Priority: a record carrying a provider activity id, then one sourced from
    the authoritative provider, then the earliest timestamp (missing counts as
    latest), then simply the first record.
    """
    for record in group:
        if record.get("provider_activity_id") or record.get("strava_id"):
            return record
    for record in group:
        if provider_of(record.get("source")) == AUTHORITATIVE_PROVIDER:
            return record
    keep = group[0]
    for record in group[1:]:
        if _timestamp(record) < _timestamp(keep):
            keep = record
    return keep


def _plan(records: Iterable[Dict], key_func) -> List[CleanupGroup]:
    groups: Dict[str, List[Dict]] = {}
    for record in records:
        groups.setdefault(key_func(record), []).append(record)

    plan: List[CleanupGroup] = []
    for key, members in groups.items():
        if len(members) < 2:
            continue
        keep = choose_keep(members)
        plan.append(CleanupGroup(key, members, keep, [r for r in members if r is not keep]))
    logger.info(
        "Cleanup plan: %d groups, %d removable of %d records",
        len(plan),
        sum(len(g.delete) for g in plan),
        sum(len(v) for v in groups.values()),
    )
    return plan


def cleanup(records: Iterable[Dict], round_unit: Optional[float] = None, date_only: bool = True) -> List[CleanupGroup]:
    """Plan removal of likely duplicates across *records*.

    Parameters
    ----------
    records : Iterable[Dict]
        Every stored activity.
    round_unit : float, optional
        Distance bucket in meters, by default ``LB_CLEANUP_ROUND_UNIT``.
    date_only : bool, optional
        Group by calendar day of ``start_date`` rather than the full value.

    Returns
    -------
    List[CleanupGroup]
        One entry per group with more than one record.
    """
    unit = DEFAULT_ROUND_UNIT if round_unit is None else round_unit
    return _plan(records, lambda r: group_key(r, unit, date_only))


def cleanup_exact(records: Iterable[Dict]) -> List[CleanupGroup]:
    """Plan removal of records whose exact signature repeats."""
    return _plan(records, exact_duplicate_key)


def apply_cleanup(store, plan: List[CleanupGroup], collection: str = "raw_activities") -> int:
    """Delete every ``delete`` record of *plan* in one batch; returns the count."""
    batch = WriteBatch()
    for group in plan:
        for record in group.delete:
            if record.get("id"):
                batch.delete(collection, record["id"])
            else:
                logger.warning("Cannot delete duplicate without id in group %s", group.key)
    store.commit(batch)
    logger.info("Deleted %d duplicate records", len(batch))
    return len(batch)


__all__ = [
    "CleanupGroup",
    "cleanup",
    "cleanup_exact",
    "apply_cleanup",
    "choose_keep",
    "group_key",
    "exact_duplicate_key",
    "round_to_unit",
]
