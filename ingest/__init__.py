from .strava import fetch_club_activities as fetch_strava_club
from .strava import fetch_club_members as fetch_strava_members
from .manual import read_csv as read_manual_csv
from .manual import load_export

__all__ = [
    "fetch_strava_club",
    "fetch_strava_members",
    "read_manual_csv",
    "load_export",
]
