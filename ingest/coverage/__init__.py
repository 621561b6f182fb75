"""Per-symbol, per-day coverage tracking."""
