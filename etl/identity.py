"""Athlete identity resolution: stable keys from ids or fuzzy display names.

Current data quirks
-------------------
• **Strava club feeds** – only ``firstname`` and the last-name *initial* are
  exposed (``"Jayko" / "C."``); there is no athlete id.
• **Athlete feeds / OAuth** – the numeric athlete id is present and is the
  only truly stable identifier.
• **Manual imports** – an ``athlete_name`` typed by an operator, sometimes with
  stray characters in front of it.  The one observed case is a zero glued to the
  first letter (``"0Arsel V."``).

So the key is the provider athlete id when we have one, and otherwise a
normalised name: leading noise removed, punctuation dropped, whitespace
collapsed, lowercased.  ``name_key`` is the single function every lookup path
(aggregation, cleanup, metadata) goes through.

Distinct people with the same normalised name collapse onto one key; there is
no signal available here to tell them apart.
"""

import logging
import os
import re
from typing import Dict, Iterable, List, Optional

from rapidfuzz import fuzz, process

logger = logging.getLogger(__name__)

# Set LB_META_FUZZY_THRESHOLD=0 to disable the fuzzy last-resort metadata lookup
META_FUZZY_THRESHOLD = int(os.getenv("LB_META_FUZZY_THRESHOLD", "90"))

NAME_ID_PREFIX = "name:"

_LEADING_NOISE_RE = re.compile(r"^[\W_]+")
_LEADING_ZEROS_RE = re.compile(r"^0+(?=[^\W\d_])")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def clean_display_name(name: Optional[str]) -> str:
    """Strip display artifacts (``"  0Arsel V."`` -> ``"Arsel V."``)."""
    if not name:
        return ""
    text = _LEADING_NOISE_RE.sub("", str(name).strip())
    return _LEADING_ZEROS_RE.sub("", text).strip()


def name_key(name: Optional[str]) -> str:
    """Normalised lookup key for a display name; ``""`` if nothing is left."""
    text = clean_display_name(name)
    text = _PUNCT_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip().lower()


def _id_key(record: Dict) -> Optional[str]:
    athlete_id = record.get("athlete_id")
    if athlete_id in (None, ""):
        athlete = record.get("athlete")
        if isinstance(athlete, dict):
            athlete_id = athlete.get("id") or athlete.get("id_str")
    if athlete_id in (None, ""):
        return None
    return str(athlete_id)


def _full_name(person: Dict) -> str:
    first = str(person.get("firstname") or person.get("first_name") or "").strip()
    last = str(person.get("lastname") or person.get("last_name") or "").strip()
    return f"{first} {last}".strip() or str(person.get("username") or "")


def _display_name(record: Dict) -> str:
    if record.get("athlete_name"):
        return str(record["athlete_name"])
    athlete = record.get("athlete")
    if isinstance(athlete, dict):
        return _full_name(athlete)
    return ""


def athlete_display(record: Dict) -> str:
    """Cleaned athlete display name carried by an activity record."""
    return clean_display_name(_display_name(record))


def resolve_key(record: Optional[Dict], prefer_name: bool = False) -> Optional[str]:
    """Identity key for the athlete behind *record*.

    Parameters
    ----------
    record : Dict
        Canonical activity or raw payload.
    prefer_name : bool, optional
        Try the name key before the id key.  Cleanup uses this so that a
        manual import (name only) groups with the API copy (id and name).

    Returns
    -------
    Optional[str]
        The key, or ``None`` when neither an id nor a usable name exists.
    """
    if not record:
        return None
    by_id = _id_key(record)
    by_name = name_key(_display_name(record)) or None
    if prefer_name:
        return by_name or by_id
    return by_id or by_name


def member_display(member: Dict) -> str:
    """Display name of a roster member (``{"id", "name"}`` or a Strava member object)."""
    target = member.get("athlete") if isinstance(member.get("athlete"), dict) else member
    return clean_display_name(target.get("name") or _full_name(target))


def member_keys(member: Dict) -> List[str]:
    """Candidate keys for a roster member, id key first."""
    target = member.get("athlete") if isinstance(member.get("athlete"), dict) else member
    member_id = target.get("id") if target.get("id") not in (None, "") else member.get("id")
    keys: List[str] = []
    for key in (str(member_id) if member_id not in (None, "") else None, name_key(member_display(member))):
        if key and key not in keys:
            keys.append(key)
    return keys


class MetadataIndex:
    """Lookup of operator-maintained athlete metadata by identity key.

    Three tiers, searched in order: direct keys (document id, name key of the
    stored name), id-derived variants (``name:<display>`` document ids with the
    punctuation stripped) and first-name-only keys.  Within a tier the first
    registered document wins; later documents never overwrite a mapping.
    """

    def __init__(self, docs: Iterable[Dict] = (), fuzzy_threshold: int = META_FUZZY_THRESHOLD):
        self.direct: Dict[str, Dict] = {}
        self.derived: Dict[str, Dict] = {}
        self.first_name: Dict[str, Dict] = {}
        self.fuzzy_threshold = fuzzy_threshold
        for doc in docs:
            self.register(doc)

    def register(self, doc: Dict) -> Dict:
        """Index a ``summary_athletes`` document and return its metadata."""
        doc_id = str(doc.get("id") or "")
        stored_name = str(doc.get("name") or "").strip()
        from_id = doc_id[len(NAME_ID_PREFIX):].strip() if doc_id.startswith(NAME_ID_PREFIX) else ""
        canonical = clean_display_name(stored_name or from_id or str(doc.get("username") or ""))

        nickname = clean_display_name(doc.get("nickname")) or None
        if not nickname and from_id and len(from_id) > len(stored_name):
            nickname = clean_display_name(from_id)

        try:
            goal = float(doc.get("goal") or 0)
        except (TypeError, ValueError):
            goal = 0.0

        meta = {"id": doc_id, "name": canonical, "nickname": nickname, "goal": goal}

        if doc_id and not from_id:
            self.direct.setdefault(doc_id, meta)
        if name_key(canonical):
            self.direct.setdefault(name_key(canonical), meta)
        if from_id and name_key(from_id):
            self.derived.setdefault(name_key(from_id), meta)
        first = canonical.split(" ")[0] if canonical else ""
        if name_key(first):
            self.first_name.setdefault(name_key(first), meta)
        return meta

    def lookup(self, key: Optional[str], loose: bool = True) -> Optional[Dict]:
        """Return metadata for *key*, or ``None``.

        With ``loose=False`` only the direct and id-derived tiers are searched,
        which is what writers use to decide which document belongs to *key*.
        """
        if not key:
            return None
        tiers = (self.direct, self.derived, self.first_name) if loose else (self.direct, self.derived)
        for tier in tiers:
            if key in tier:
                return tier[key]
        if loose and self.fuzzy_threshold and self.direct:
            best = process.extractOne(
                key, list(self.direct), scorer=fuzz.token_sort_ratio, score_cutoff=self.fuzzy_threshold
            )
            if best is not None:
                logger.debug("Fuzzy metadata match %r -> %r (%.1f)", key, best[0], best[1])
                return self.direct[best[0]]
        return None


def display_name(summary_name: Optional[str], meta: Optional[Dict]) -> str:
    """Leaderboard label: nickname, else the activity-derived name, else ``Unknown``."""
    nickname = clean_display_name(meta.get("nickname")) if meta else ""
    return nickname or clean_display_name(summary_name) or (meta or {}).get("name") or "Unknown"


__all__ = [
    "clean_display_name",
    "name_key",
    "resolve_key",
    "athlete_display",
    "member_keys",
    "member_display",
    "MetadataIndex",
    "display_name",
]
