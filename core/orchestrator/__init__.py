"""Backfill orchestration over coverage records."""
from .backfill import BackfillOrchestrator, BackfillSummary

__all__ = ['BackfillOrchestrator', 'BackfillSummary']
