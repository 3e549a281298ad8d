"""Field normaliser: coerce heterogeneous activity payloads into one record shape.

Activities reach us from the Strava API (``total_elevation_gain``, nested
``athlete`` object, provider ``id``), from CSV uploads typed in by hand
(``distance_m``, ``athlete_name``) and from older exports that used camelCase
(``distanceMeters``, ``movingTime``).  Rather than probing keys ad hoc, every
canonical field has an ordered tuple of candidate accessors below; the first one
that yields a usable value wins.

Every rule writes exactly one field and reads only the raw payload, so the
rules are independent of each other and of their order in ``FIELD_RULES``.
``normalize`` never raises: values that cannot be coerced become ``0`` or the
field default.
"""

from typing import Any, Callable, Dict, Optional, Tuple

from .utils import now_ms, to_int, to_number

_MISSING = object()

Accessor = Callable[[Dict], Any]


def _key(name: str) -> Accessor:
    """Accessor for a top-level key."""

    def get(raw: Dict) -> Any:
        return raw.get(name, _MISSING)

    return get


def _athlete(name: str) -> Accessor:
    """Accessor for a key of the nested ``athlete`` object."""

    def get(raw: Dict) -> Any:
        athlete = raw.get("athlete")
        if not isinstance(athlete, dict):
            return _MISSING
        return athlete.get(name, _MISSING)

    return get


def _first(raw: Dict, accessors: Tuple[Accessor, ...]) -> Any:
    """Return the first value that is present, non-null and non-empty."""
    for accessor in accessors:
        value = accessor(raw)
        if value is _MISSING or value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return _MISSING


# ---------------------------------------------------------------------------
# Candidate accessors, in priority order
# ---------------------------------------------------------------------------

ATHLETE_NAME_SOURCES = (_key("athlete_name"),)
FIRST_NAME_SOURCES = (_athlete("firstname"), _athlete("first_name"))
LAST_NAME_SOURCES = (_athlete("lastname"), _athlete("last_name"))
ATHLETE_ID_SOURCES = (_key("athlete_id"), _athlete("id"), _athlete("id_str"))
DISTANCE_SOURCES = (
    _key("distance"),
    _key("distance_m"),
    _key("distanceMeters"),
    _key("distance_meters"),
)
MOVING_TIME_SOURCES = (_key("moving_time"), _key("movingTime"))
ELAPSED_TIME_SOURCES = (_key("elapsed_time"),)
ELEVATION_SOURCES = (
    _key("elevation_gain"),
    _key("total_elevation_gain"),
    _key("elev_total"),
    _key("elevation"),
)
PROVIDER_ID_SOURCES = (_key("provider_activity_id"), _key("strava_id"), _key("stravaId"))

DEFAULT_TYPE = "Run"


# ---------------------------------------------------------------------------
# Per-field rules
# ---------------------------------------------------------------------------

def _athlete_name(raw: Dict, now: int) -> str:
    existing = _first(raw, ATHLETE_NAME_SOURCES)
    if existing is not _MISSING:
        return str(existing)
    parts = []
    for sources in (FIRST_NAME_SOURCES, LAST_NAME_SOURCES):
        value = _first(raw, sources)
        if value is not _MISSING:
            parts.append(str(value).strip())
    return " ".join(p for p in parts if p)


def _athlete_id(raw: Dict, now: int) -> Optional[str]:
    value = _first(raw, ATHLETE_ID_SOURCES)
    return None if value is _MISSING else str(value)


def _distance(raw: Dict, now: int) -> float:
    value = _first(raw, DISTANCE_SOURCES)
    return 0 if value is _MISSING else to_number(value)


def _moving_time(raw: Dict, now: int) -> int:
    value = _first(raw, MOVING_TIME_SOURCES)
    return 0 if value is _MISSING else to_int(value)


def _elapsed_time(raw: Dict, now: int) -> int:
    value = _first(raw, ELAPSED_TIME_SOURCES)
    if value is not _MISSING:
        return to_int(value)
    # falls back to the (rounded) moving time
    return _moving_time(raw, now)


def _elevation_gain(raw: Dict, now: int) -> float:
    value = _first(raw, ELEVATION_SOURCES)
    return 0 if value is _MISSING else to_number(value)


def _type(raw: Dict, now: int) -> str:
    value = _first(raw, (_key("type"),))
    return DEFAULT_TYPE if value is _MISSING else str(value)


def _name(raw: Dict, now: int) -> str:
    value = _first(raw, (_key("name"),))
    if value is not _MISSING:
        return str(value)
    activity_type = _first(raw, (_key("type"),))
    return f"{activity_type} Activity" if activity_type is not _MISSING else "Activity"


def _sport_type(raw: Dict, now: int) -> Optional[str]:
    if "sport_type" in raw:
        return raw["sport_type"]
    activity_type = _first(raw, (_key("type"),))
    return None if activity_type is _MISSING else activity_type


def _workout_type(raw: Dict, now: int) -> Any:
    return raw.get("workout_type")


def _start_date(raw: Dict, now: int) -> Optional[str]:
    value = _first(raw, (_key("start_date"),))
    return None if value is _MISSING else str(value)


def _provider_activity_id(raw: Dict, now: int) -> Optional[str]:
    value = _first(raw, PROVIDER_ID_SOURCES)
    return None if value is _MISSING else str(value)


def _updated_at(raw: Dict, now: int) -> Any:
    value = raw.get("updated_at")
    return value if value else now


FIELD_RULES: Tuple[Tuple[str, Callable[[Dict, int], Any]], ...] = (
    ("athlete_name", _athlete_name),
    ("athlete_id", _athlete_id),
    ("distance", _distance),
    ("moving_time", _moving_time),
    ("elapsed_time", _elapsed_time),
    ("elevation_gain", _elevation_gain),
    ("name", _name),
    ("type", _type),
    ("sport_type", _sport_type),
    ("workout_type", _workout_type),
    ("start_date", _start_date),
    ("provider_activity_id", _provider_activity_id),
    ("updated_at", _updated_at),
)

_RULES_BY_FIELD = dict(FIELD_RULES)


def resolve_field(field: str, raw: Dict, now: Optional[int] = None) -> Any:
    """Evaluate the rule for a single canonical *field* against *raw*."""
    return _RULES_BY_FIELD[field](raw if isinstance(raw, dict) else {}, now if now is not None else now_ms())


def normalize(raw: Any, now: Optional[int] = None) -> Dict:
    """Return the canonical form of a raw activity payload.

    Parameters
    ----------
    raw : Any
        Activity mapping of any shape. Non-mappings are treated as empty.
    now : int, optional
        Epoch milliseconds used when ``updated_at`` is missing, by default the
        current time.

    Returns
    -------
    Dict
        A new dict: the input keys plus every canonical field filled in.
    """
    source = raw if isinstance(raw, dict) else {}
    stamp = now if now is not None else now_ms()
    out = dict(source)
    for field, rule in FIELD_RULES:
        out[field] = rule(source, stamp)
    return out


__all__ = ["FIELD_RULES", "normalize", "resolve_field"]
