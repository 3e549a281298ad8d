"""Passes over the store: sync incoming activities, aggregate, clean up.

Each pass collects its writes in one ``WriteBatch`` and commits once, so a
failure part-way leaves the store exactly as it was.  Passes do not overlap:
a process-wide lock is taken for the duration of each one and a second pass
started meanwhile raises ``PassInProgress``.

Within a sync pass incoming records are handled one at a time and every
record created earlier in the same pass is offered as a candidate to the
later ones, so two copies of one activity in the same payload do not both
become new documents unless the policy says so.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from tqdm import tqdm

from . import aggregation, cleanup, identity, matching, merge
from .normalize import normalize
from .store import ACTIVITIES, ATHLETES, LEADERBOARD, DocumentStore, WriteBatch
from .utils import now_ms

logger = logging.getLogger(__name__)

SNAPSHOT_ID = "latest"

_PASS_LOCK = threading.Lock()


class PassInProgress(RuntimeError):
    """Another sync, aggregation or cleanup pass is still running."""


@contextmanager
def _exclusive(name: str):
    if not _PASS_LOCK.acquire(blocking=False):
        raise PassInProgress(f"cannot start {name} pass: another pass is running")
    try:
        yield
    finally:
        _PASS_LOCK.release()


def _candidates(store: DocumentStore, key: str, staged: Dict[str, Dict]) -> List[Dict]:
    # staged records first: they are the freshest view of this athlete
    local = [doc for doc in staged.values() if doc.get("athlete_key") == key]
    seen = {doc.get("id") for doc in local}
    stored = [
        doc
        for doc in store.query(ACTIVITIES, "athlete_key", key, limit=matching.MAX_CANDIDATES)
        if doc.get("id") not in seen
    ]
    return (local + stored)[: matching.MAX_CANDIDATES]


def _athlete_doc_id(row: Dict) -> str:
    key = row["athlete_key"]
    if key.isdigit():
        return key
    return identity.NAME_ID_PREFIX + (row["summary"].get("name") or key)


def _place(store: DocumentStore, staged: Dict[str, Dict], doc_id: str, record: Dict) -> tuple:
    """First of *doc_id*, *doc_id*_2, ... that is free or already holds this activity.

    Returns ``(id, existing)`` where *existing* is the document to merge onto,
    or ``None`` when the id is free.
    """
    candidate, n = doc_id, 1
    while True:
        existing = staged.get(candidate) or store.get(ACTIVITIES, candidate)
        if existing is None or merge.same_activity(existing, record):
            return candidate, existing
        n += 1
        candidate = f"{doc_id}_{n}"


def sync_pass(store: DocumentStore, raws: Iterable[Dict], now: Optional[int] = None) -> Dict[str, int]:
    """Normalise, match and stage every raw activity, then commit in one batch.

    Returns counts of ``created``, ``updated`` and ``skipped`` records.
    ``StoreUnavailable`` propagates; nothing from the pass is written then.
    """
    stamp = now if now is not None else now_ms()
    stats = {"created": 0, "updated": 0, "skipped": 0}
    raws = list(raws)

    with _exclusive("sync"):
        staged: Dict[str, Dict] = {}
        for raw in tqdm(raws, desc="Sync activities", unit="activity", disable=len(raws) < 100):
            record = normalize(raw, now=stamp)
            key = identity.resolve_key(record)
            if not key:
                logger.warning("Skipping activity %r: no athlete id or name", record.get("name"))
                stats["skipped"] += 1
                continue
            record["athlete_key"] = key
            record.pop("id", None)

            candidates = _candidates(store, key, staged)
            try:
                decision = merge.decide(matching.match(record, candidates))
            except Exception:  # noqa: BLE001
                # never lose an activity to a matcher bug: store it as new
                logger.exception("Matching failed for %r; creating new record", record.get("name"))
                decision = merge.Decision(merge.CREATE)

            existing = None
            if decision.action == merge.UPDATE:
                doc_id, existing = decision.target["id"], decision.target
            else:
                doc_id = merge.make_record_id(record, key)
                if not record.get("provider_activity_id"):
                    # composite ids collide for distinct activities; a re-sent one lands on its own doc
                    doc_id, existing = _place(store, staged, doc_id, record)

            if existing is not None:
                merged = merge.merge_records(existing, record)
                merged["updated_at"] = stamp
                staged[doc_id] = merged
                stats["updated"] += 1
                logger.debug("Update %s", doc_id)
            else:
                record["id"] = doc_id
                record.setdefault("created_at", stamp)
                staged[doc_id] = record
                stats["created"] += 1
                logger.debug("Create %s", doc_id)

        batch = WriteBatch()
        for doc_id, doc in staged.items():
            batch.upsert(ACTIVITIES, doc_id, doc, merge=True)
        store.commit(batch)

    logger.info(
        "Sync pass: %d created, %d updated, %d skipped",
        stats["created"], stats["updated"], stats["skipped"],
    )
    return stats


def aggregate_pass(
    store: DocumentStore,
    members: Optional[List[Dict]] = None,
    since: Optional[float] = None,
    now: Optional[int] = None,
) -> List[Dict]:
    """Recompute the leaderboard from every stored activity and publish it.

    The snapshot and the lightweight athlete records are written in one
    batch; operator-edited fields (nickname, goal) are left untouched.
    """
    stamp = now if now is not None else now_ms()
    with _exclusive("aggregation"):
        records = store.scan(ACTIVITIES)
        summaries = aggregation.aggregate(records, members=members, since=since, now=stamp)
        meta_index = identity.MetadataIndex(store.scan(ATHLETES))
        rows = aggregation.leaderboard_rows(summaries, meta_index)

        batch = WriteBatch()
        for row in rows:
            # first-name and fuzzy hits label a row but never pick its document
            meta = meta_index.lookup(row["athlete_key"], loose=False)
            doc_id = meta["id"] if meta and meta.get("id") else _athlete_doc_id(row)
            doc = {"id": doc_id, "updated_at": stamp}
            if row["summary"].get("name"):
                doc["name"] = row["summary"]["name"]
            batch.upsert(ATHLETES, doc_id, doc)
        batch.upsert(
            LEADERBOARD,
            SNAPSHOT_ID,
            {"metadata": {"aggregated_at": stamp, "rows_count": len(rows)}, "rows": rows},
            merge=False,
        )
        store.commit(batch)

    logger.info("Published leaderboard snapshot with %d rows from %d activities", len(rows), len(records))
    return rows


def read_snapshot(store: DocumentStore) -> Dict:
    """Latest published leaderboard; rows missing a summary get a zero one."""
    snapshot = store.get(LEADERBOARD, SNAPSHOT_ID) or {}
    last = (snapshot.get("metadata") or {}).get("aggregated_at")
    rows = []
    for row in snapshot.get("rows") or []:
        summary = row.get("summary")
        if summary:
            summary = dict(summary, updated_at=summary.get("updated_at") or last)
        else:
            summary = {"distance": 0, "count": 0, "longest": 0, "avg_pace": None, "elev_gain": 0, "updated_at": last}
        rows.append(dict(row, summary=summary))
    return {"rows": rows, "last_aggregation_at": last}


def cleanup_pass(
    store: DocumentStore,
    round_unit: Optional[float] = None,
    date_only: bool = True,
    apply: bool = False,
) -> List[cleanup.CleanupGroup]:
    """Plan duplicate removal over every stored activity; delete only if *apply*."""
    with _exclusive("cleanup"):
        plan = cleanup.cleanup(store.scan(ACTIVITIES), round_unit=round_unit, date_only=date_only)
        if apply and plan:
            cleanup.apply_cleanup(store, plan, ACTIVITIES)
    return plan


def update_athlete_meta(
    store: DocumentStore,
    athlete_id: str,
    nickname: Optional[str] = None,
    goal: Optional[float] = None,
) -> Dict:
    """Operator edit of an athlete's nickname and/or distance goal."""
    update: Dict = {"id": str(athlete_id), "updated_at": now_ms()}
    if nickname is not None:
        update["nickname"] = nickname.strip() or None
    if goal is not None:
        update["goal"] = float(goal)
    store.upsert(ATHLETES, str(athlete_id), update)
    return store.get(ATHLETES, str(athlete_id)) or update


__all__ = [
    "PassInProgress",
    "sync_pass",
    "aggregate_pass",
    "read_snapshot",
    "cleanup_pass",
    "update_athlete_meta",
]
