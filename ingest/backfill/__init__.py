"""Backfill jobs and business-day calendar."""
