"""Per-asset indicator snapshots."""
