"""Main orchestrator script.

This script can be scheduled (e.g., cron or CI) or run ad-hoc to perform the
full pipeline: ingest activities, reconcile them against the store, optionally
clean up duplicates, aggregate the leaderboard, and write a report.
"""

import os, logging
from pathlib import Path

from ingest import strava, manual
from etl import aggregation, pipeline, report
from etl.store import JsonFileStore
from dotenv import load_dotenv

# Load environment variables from .env if present (safe-no-op if file missing)
load_dotenv()

# ---------------------------------------------------------------------------
# Logging setup (controlled by LB_LOGLEVEL, default INFO)
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=os.getenv("LB_LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

# Optional env var LB_ONLY="strava", "strava,athlete" etc. to limit sources ingested
# (strava = club feed + roster, athlete = the token holder's own activities)
LB_ONLY = {s.strip().lower() for s in os.getenv("LB_ONLY", "strava,athlete,manual").split(",") if s.strip()}

STORE_PATH = Path(os.getenv("LB_STORE_PATH", str(Path("meta") / "store.json")))
REPORT_PATH = Path(os.getenv("LB_REPORT_PATH", "report.md"))
CLEANUP_APPLY = os.getenv("LB_CLEANUP_APPLY", "0").lower() in {"1", "true", "yes"}


def orchestrate() -> None:
    """Run the full leaderboard pipeline."""
    store = JsonFileStore(STORE_PATH)
    since = aggregation.window_start()

    logger.info("Starting ingestion phase (window start %d)", since)

    club_raw = strava.fetch_club_activities(after=since) if "strava" in LB_ONLY else []
    athlete_raw = strava.fetch_athlete_activities(after=since) if "athlete" in LB_ONLY else []
    members = strava.fetch_club_members() if "strava" in LB_ONLY else []

    manual_raw = []
    if "manual" in LB_ONLY:
        if os.getenv("LB_MANUAL_CSV"):
            manual_raw += manual.read_csv(os.environ["LB_MANUAL_CSV"])
        if os.getenv("LB_MANUAL_EXPORT"):
            manual_raw += manual.load_export(os.environ["LB_MANUAL_EXPORT"])

    logger.info(
        "Fetched counts — Strava athlete: %d, Strava club: %d, manual: %d, members: %d",
        len(athlete_raw), len(club_raw), len(manual_raw), len(members),
    )

    stats = pipeline.sync_pass(store, athlete_raw + club_raw + manual_raw)
    logger.info("Reconciled activities: %s", stats)

    plan = pipeline.cleanup_pass(store, apply=CLEANUP_APPLY)
    if plan and not CLEANUP_APPLY:
        logger.info(
            "%d duplicate groups found; set LB_CLEANUP_APPLY=1 to delete %d records",
            len(plan), sum(len(g.delete) for g in plan),
        )

    rows = pipeline.aggregate_pass(store, members=members or None, since=since)

    logger.info("Writing report for %d athletes", len(rows))
    report.write_markdown_report(rows, REPORT_PATH)

    logger.info("Pipeline complete → %s", REPORT_PATH)


if __name__ == "__main__":
    orchestrate()
