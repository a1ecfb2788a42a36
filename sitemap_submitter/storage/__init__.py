"""Local JSON cache for sitemap snapshots, submission history and quota state."""
