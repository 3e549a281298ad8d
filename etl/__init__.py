"""Activity reconciliation and leaderboard aggregation."""
