"""Merge/insert decision: what to do with an incoming activity once matched.

Only the two definitive match types may overwrite a stored record.  Every
probable or weak match still results in a *new* record: a wrong update
silently corrupts a real activity, while a wrong insert is just a duplicate
that the offline cleanup pass can collapse later.
"""

import re
from typing import Dict, NamedTuple, Optional

from .matching import MatchResult, MatchType, provider_of, title_key
from .utils import round_half_up, to_number

UPDATE_MATCH_TYPES = frozenset({MatchType.PROVIDER_ID, MatchType.START_DATE_STRICT})

UPDATE = "update"
CREATE = "create"

# keys that always keep the stored value on merge
_PRESERVED_KEYS = ("id", "created_at")


class Decision(NamedTuple):
    action: str
    target: Optional[Dict] = None


def decide(result: MatchResult) -> Decision:
    """Map a match result to ``update`` (with its target) or ``create``."""
    if result.matched and result.match_type in UPDATE_MATCH_TYPES and result.target is not None:
        return Decision(UPDATE, result.target)
    return Decision(CREATE)


def sanitize_id(text: str) -> str:
    """Document-id-safe form of *text* (``"a b:c"`` -> ``"a_b_c"``)."""
    return re.sub(r"_+", "_", re.sub(r"[^a-zA-Z0-9_-]", "_", str(text or "")))


def make_record_id(record: Dict, athlete_key: Optional[str] = None) -> str:
    """Id for a newly created record.

    ``<provider>_<provider_activity_id>`` when the provider id is known, so a
    retried insert lands on the same document.  Otherwise a composite of
    athlete, rounded distance, rounded moving time and start date, which can
    collide for genuinely different activities; cleanup is the backstop.
    """
    provider_id = record.get("provider_activity_id")
    if provider_id:
        provider = provider_of(record.get("source")) or "provider"
        return sanitize_id(f"{provider}_{provider_id}")
    parts = [
        athlete_key or record.get("athlete_id") or record.get("athlete_name") or "anon",
        str(round_half_up(to_number(record.get("distance")))),
        str(round_half_up(to_number(record.get("moving_time")))),
        str(record.get("start_date") or ""),
    ]
    return sanitize_id("_".join(parts)).strip("_")


def same_activity(a: Dict, b: Dict) -> bool:
    """True when *a* and *b* agree on every field the composite id and title carry."""
    return (
        round_half_up(to_number(a.get("distance"))) == round_half_up(to_number(b.get("distance")))
        and round_half_up(to_number(a.get("moving_time"))) == round_half_up(to_number(b.get("moving_time")))
        and title_key(a) == title_key(b)
        and str(a.get("start_date") or "") == str(b.get("start_date") or "")
    )


def merge_records(existing: Optional[Dict], incoming: Optional[Dict]) -> Dict:
    """Deep merge *incoming* into *existing*, preferring non-null incoming values."""
    out = dict(existing or {})
    if not incoming:
        return out
    for key, value in incoming.items():
        if value is None:
            continue
        if key in _PRESERVED_KEYS and out.get(key) is not None:
            continue
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = merge_records(out[key], value)
        else:
            out[key] = value
    return out


__all__ = ["Decision", "UPDATE", "CREATE", "UPDATE_MATCH_TYPES", "decide", "make_record_id", "merge_records", "same_activity", "sanitize_id"]
