"""Duplicate matcher: is an incoming activity one we already store?

The same run reaches us several times: re-fetched from Strava after the
athlete renamed it, pasted in from a CSV by an admin, or pulled from the club
feed (no start time, no activity id) and later from the athlete feed (both).
No single field identifies an activity across all of those, so matching is a
ladder of rules, tried in order against each candidate:

1. provider activity id equal                          -> definitive
2. start times within 2 min                            -> definitive
3. start times within 5 min + loose distance/duration  -> probable
4. no start-time pair; tight distance/duration plus
   equal title or equal elevation                      -> probable
5. neither has a start time; loose distance/duration,
   same provider                                       -> weak

Tolerances tighten as corroborating signals disappear.  Changing any constant
below changes which records get merged; the scenario tests in
``tests/test_matching.py`` pin the current behaviour.
"""

import logging
from enum import Enum, IntEnum
from typing import Dict, List, NamedTuple, Optional

from .utils import parse_timestamp, to_number

logger = logging.getLogger(__name__)

# Candidate lists are scoped by athlete upstream; never look past this many.
MAX_CANDIDATES = 50

START_DATE_STRICT_MS = 2 * 60 * 1000
START_DATE_LOOSE_MS = 5 * 60 * 1000

LOOSE_DISTANCE_M = 50
LOOSE_DISTANCE_REL = 0.03
LOOSE_TIME_S = 60

STRICT_DISTANCE_M = 10
STRICT_DISTANCE_REL = 0.02
STRICT_TIME_S = 10
STRICT_ELEVATION_M = 5


class MatchType(str, Enum):
    PROVIDER_ID = "provider_activity_id"
    START_DATE_STRICT = "start_date_strict"
    START_DATE_LOOSE = "start_date_loose"
    STRICT_NUMERIC = "strict_numeric"
    LOOSE_FALLBACK = "loose_fallback"
    NONE = "none"


class Confidence(IntEnum):
    NONE = 0
    WEAK = 1
    PROBABLE = 2
    DEFINITIVE = 3


CONFIDENCE = {
    MatchType.PROVIDER_ID: Confidence.DEFINITIVE,
    MatchType.START_DATE_STRICT: Confidence.DEFINITIVE,
    MatchType.START_DATE_LOOSE: Confidence.PROBABLE,
    MatchType.STRICT_NUMERIC: Confidence.PROBABLE,
    MatchType.LOOSE_FALLBACK: Confidence.WEAK,
    MatchType.NONE: Confidence.NONE,
}


class MatchResult(NamedTuple):
    matched: bool
    target: Optional[Dict]
    match_type: MatchType
    confidence: Confidence
    reason: str = ""


NO_MATCH = MatchResult(False, None, MatchType.NONE, Confidence.NONE, "no candidate matched")


def provider_of(source) -> str:
    """Provider family of a ``source`` tag (``"strava_api"`` -> ``"strava"``)."""
    text = str(source or "").strip().lower()
    if "strava" in text:
        return "strava"
    return text


def _close(a: float, b: float, abs_tol: float, rel_tol: float) -> bool:
    diff = abs(a - b)
    return diff <= abs_tol or diff / max(1, abs(a), abs(b)) <= rel_tol


def _durations_close(incoming: Dict, candidate: Dict, tol_s: int) -> bool:
    if abs(to_number(incoming.get("moving_time")) - to_number(candidate.get("moving_time"))) <= tol_s:
        return True
    inc_elapsed = to_number(incoming.get("elapsed_time"))
    cand_elapsed = to_number(candidate.get("elapsed_time"))
    return bool(inc_elapsed and cand_elapsed) and abs(inc_elapsed - cand_elapsed) <= tol_s


def _distance(record: Dict) -> float:
    return to_number(record.get("distance"))


def title_key(record: Dict) -> str:
    """Whitespace/case-normalised title; ``""`` for titles the normaliser made up."""
    title = " ".join(str(record.get("name") or "").split()).lower()
    activity_type = " ".join(str(record.get("type") or "").split()).lower()
    if title in ("activity", f"{activity_type} activity"):
        return ""
    return title


def _start_ms(record: Dict) -> Optional[float]:
    parsed = parse_timestamp(record.get("start_date"))
    return parsed.timestamp() * 1000 if parsed else None


def _result(match_type: MatchType, target: Dict, reason: str) -> MatchResult:
    return MatchResult(True, target, match_type, CONFIDENCE[match_type], reason)


def match_candidate(incoming: Dict, candidate: Dict) -> MatchResult:
    """Apply the rule ladder to a single candidate."""
    inc_pid = incoming.get("provider_activity_id")
    if inc_pid and candidate.get("provider_activity_id") and str(inc_pid) == str(candidate["provider_activity_id"]):
        return _result(MatchType.PROVIDER_ID, candidate, f"provider activity id {inc_pid}")

    inc_ms = _start_ms(incoming)
    cand_ms = _start_ms(candidate)
    inc_dist, cand_dist = _distance(incoming), _distance(candidate)

    if inc_ms is not None and cand_ms is not None:
        delta = abs(inc_ms - cand_ms)
        if delta <= START_DATE_STRICT_MS:
            return _result(MatchType.START_DATE_STRICT, candidate, f"start dates {delta / 1000:.0f}s apart")
        if (
            delta <= START_DATE_LOOSE_MS
            and _close(inc_dist, cand_dist, LOOSE_DISTANCE_M, LOOSE_DISTANCE_REL)
            and _durations_close(incoming, candidate, LOOSE_TIME_S)
        ):
            return _result(MatchType.START_DATE_LOOSE, candidate, f"start dates {delta / 1000:.0f}s apart, numbers close")
        # both timestamps known and too far apart (or numbers off): different activity
        return NO_MATCH

    if _close(inc_dist, cand_dist, STRICT_DISTANCE_M, STRICT_DISTANCE_REL) and _durations_close(
        incoming, candidate, STRICT_TIME_S
    ):
        inc_title, cand_title = title_key(incoming), title_key(candidate)
        if inc_title and inc_title == cand_title:
            return _result(MatchType.STRICT_NUMERIC, candidate, "tight numbers, same title")
        inc_elev = to_number(incoming.get("elevation_gain"))
        cand_elev = to_number(candidate.get("elevation_gain"))
        if abs(inc_elev - cand_elev) <= STRICT_ELEVATION_M:
            return _result(MatchType.STRICT_NUMERIC, candidate, "tight numbers, same elevation")

    if (
        not incoming.get("start_date")
        and not candidate.get("start_date")
        and provider_of(incoming.get("source"))
        and provider_of(incoming.get("source")) == provider_of(candidate.get("source"))
        and _close(inc_dist, cand_dist, LOOSE_DISTANCE_M, LOOSE_DISTANCE_REL)
        and _durations_close(incoming, candidate, LOOSE_TIME_S)
    ):
        return _result(MatchType.LOOSE_FALLBACK, candidate, f"loose numbers, same provider {provider_of(candidate.get('source'))}")

    return NO_MATCH


def match(incoming: Dict, candidates: List[Dict]) -> MatchResult:
    """Find the stored record *incoming* duplicates, if any.

    Parameters
    ----------
    incoming : Dict
        Normalised activity about to be stored.
    candidates : List[Dict]
        Stored activities of the same athlete. Only the first
        ``MAX_CANDIDATES`` are examined, in the order given.

    Returns
    -------
    MatchResult
        The first candidate that satisfies any rule, with the rule that fired.
        There is no best-of search across candidates.
    """
    for candidate in candidates[:MAX_CANDIDATES]:
        result = match_candidate(incoming, candidate)
        if result.matched:
            logger.debug(
                "Matched incoming %s to %s (%s: %s)",
                incoming.get("provider_activity_id") or incoming.get("name"),
                candidate.get("id"),
                result.match_type.value,
                result.reason,
            )
            return result
    return NO_MATCH


__all__ = ["MatchType", "Confidence", "MatchResult", "match", "match_candidate", "provider_of", "title_key", "MAX_CANDIDATES"]
