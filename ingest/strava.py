"""Module for pulling activities and club rosters from the Strava API.

Club feeds (``/clubs/{id}/activities``) are what the leaderboard is built
from, but they are thin: no activity id, no start date, and the athlete is
only ``firstname`` plus last-name initial.  The athlete feed
(``/athlete/activities``) has everything but needs that athlete's own token.

Every item returned here is tagged with ``source="strava_api"`` and
``fetched_at``, and the provider ``id`` (when present) is copied to
``strava_id`` so it cannot be mistaken for a store document id.
"""

from typing import Dict, List, Optional

import logging
import os
import time

import requests
from tqdm import tqdm

from . import cache

logger = logging.getLogger(__name__)

STRAVA_API_URL = "https://www.strava.com/api/v3"
SOURCE_TAG = "strava_api"

PER_PAGE = 200
MAX_ACTIVITY_PAGES = 5
MAX_MEMBER_PAGES = 10


def _token(token: Optional[str]) -> Optional[str]:
    return token or os.getenv("STRAVA_ACCESS_TOKEN")


def _get_paged(url: str, token: str, params: Dict, max_pages: int, desc: str) -> List[Dict]:
    """GET every page of *url* until a short page or *max_pages*."""
    items: List[Dict] = []
    headers = {"Authorization": f"Bearer {token}"}
    with tqdm(total=max_pages, desc=desc, unit="page", leave=False) as bar:
        for page in range(1, max_pages + 1):
            logger.debug("Requesting %s page %d", url, page)
            resp = requests.get(url, params={**params, "per_page": PER_PAGE, "page": page}, headers=headers, timeout=15)
            logger.debug("Strava response status %s", resp.status_code)
            resp.raise_for_status()
            chunk = resp.json() or []
            items.extend(chunk)
            bar.update(1)
            if len(chunk) < PER_PAGE:
                break
    return items


def tag_activity(item: Dict, fetched_at: Optional[int] = None) -> Dict:
    """Copy of a Strava activity with provenance fields set."""
    out = dict(item)
    if out.get("id") is not None:
        out["strava_id"] = str(out.pop("id"))
    out["source"] = SOURCE_TAG
    out["fetched_at"] = fetched_at if fetched_at is not None else int(time.time() * 1000)
    return out


def fetch_club_activities(club_id: Optional[str] = None, token: Optional[str] = None, after: Optional[int] = None) -> List[Dict]:
    """Fetch recent activities of a Strava club.

    Parameters
    ----------
    club_id : str, optional
        Club id, by default ``STRAVA_CLUB_ID``.
    token : str, optional
        Bearer token of a club member, by default ``STRAVA_ACCESS_TOKEN``.
    after : int, optional
        Epoch seconds; only activities after this time are requested.

    Returns
    -------
    List[Dict]
        Tagged raw activities; empty on any API failure.
    """
    club_id = club_id or os.getenv("STRAVA_CLUB_ID")
    token = _token(token)
    if not club_id or not token:
        logger.warning("STRAVA_CLUB_ID or STRAVA_ACCESS_TOKEN not set; skipping club activities")
        return []

    feed = f"club_activities:{club_id}:after={after or 0}"
    cached = cache.get_cached(feed)
    if cached is not None:
        logger.info("Using cached club activities (%d entries)", len(cached))
        return cached

    params = {"after": after} if after else {}
    try:
        raw = _get_paged(f"{STRAVA_API_URL}/clubs/{club_id}/activities", token, params, MAX_ACTIVITY_PAGES, "Club activities")
    except Exception:  # noqa: BLE001
        # API error or network failure – return empty list, stored data still aggregates.
        logger.exception("Strava club activities fetch failed")
        return []

    fetched_at = int(time.time() * 1000)
    activities = [tag_activity(item, fetched_at) for item in raw]
    cache.set_cached(feed, activities)
    logger.info("Fetched %d club activities", len(activities))
    return activities


def fetch_club_members(club_id: Optional[str] = None, token: Optional[str] = None) -> List[Dict]:
    """Fetch the club roster (``firstname``, ``lastname``, sometimes ``id``)."""
    club_id = club_id or os.getenv("STRAVA_CLUB_ID")
    token = _token(token)
    if not club_id or not token:
        return []

    feed = f"club_members:{club_id}"
    cached = cache.get_cached(feed)
    if cached is not None:
        return cached

    try:
        members = _get_paged(f"{STRAVA_API_URL}/clubs/{club_id}/members", token, {}, MAX_MEMBER_PAGES, "Club members")
    except Exception:  # noqa: BLE001
        logger.exception("Strava club members fetch failed")
        return []

    cache.set_cached(feed, members)
    logger.info("Fetched %d club members", len(members))
    return members


def fetch_athlete_activities(token: Optional[str] = None, after: Optional[int] = None) -> List[Dict]:
    """Fetch the authenticated athlete's own activities (full detail, with ids)."""
    token = _token(token)
    if not token:
        return []
    params = {"after": after} if after else {}
    try:
        raw = _get_paged(f"{STRAVA_API_URL}/athlete/activities", token, params, 1, "Athlete activities")
    except Exception:  # noqa: BLE001
        logger.exception("Strava athlete activities fetch failed")
        return []
    fetched_at = int(time.time() * 1000)
    return [tag_activity(item, fetched_at) for item in raw]


__all__ = ["fetch_club_activities", "fetch_club_members", "fetch_athlete_activities", "tag_activity"]
