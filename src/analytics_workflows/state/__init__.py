"""Local JSON persistence."""
