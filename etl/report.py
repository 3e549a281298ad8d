"""Report module: writes the Markdown leaderboard."""

from typing import Dict, List, Optional, Union
from pathlib import Path

from .aggregation import rank_rows


def format_pace(seconds_per_km: Optional[int]) -> str:
    """``300`` -> ``"5:00 /km"``; ``None`` -> ``"–"``."""
    if not seconds_per_km:
        return "–"
    minutes, seconds = divmod(int(seconds_per_km), 60)
    return f"{minutes}:{seconds:02d} /km"


def write_markdown_report(rows: List[Dict], output_path: Union[str, Path] = "report.md") -> None:
    """Write a Markdown leaderboard of the aggregated rows.

    Parameters
    ----------
    rows : List[Dict]
        Leaderboard rows as produced by ``aggregation.leaderboard_rows``.
    output_path : Union[str, Path], optional
        Destination file path, by default "report.md".
    """
    lines: List[str] = ["# Club Leaderboard", "\n"]

    total = len(rows)
    inactive = sum(1 for r in rows if not r["summary"].get("count"))
    lines.append(f"> {total} athletes, {inactive} without activities in this period.")
    lines.append("\n")

    for rank, row in enumerate(rank_rows(rows), start=1):
        summary = row["summary"]
        km = summary.get("distance", 0) / 1000
        line = (
            f"## {rank}. {row.get('athlete_display', 'Unknown')} — {km:.2f} km"
            f"\n> {summary.get('count', 0)} runs · longest {summary.get('longest', 0) / 1000:.2f} km"
            f" · pace {format_pace(summary.get('avg_pace'))} · elev {summary.get('elev_gain', 0):.0f} m"
        )
        goal = row.get("goal") or 0
        if goal:
            line += f" · goal {km / goal * 100:.0f}% of {goal:g} km"
        lines.append(line)

    Path(output_path).write_text("\n".join(lines), encoding="utf-8")

__all__ = ["write_markdown_report", "format_pace"]
