"""Data models for per-symbol, per-day coverage tracking."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class IngestionStatus(str, Enum):
    """Lifecycle of an ingestion run for one (symbol, date)."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionType(str, Enum):
    """What an ingestion run fetches."""

    MESSAGES = "messages"
    ANALYTICS = "analytics"
    PRICE = "price"
    ALL = "all"

    @property
    def categories(self) -> List[str]:
        if self is IngestionType.ALL:
            return [IngestionType.MESSAGES.value, IngestionType.ANALYTICS.value,
                    IngestionType.PRICE.value]
        return [self.value]

    @property
    def forces_refetch(self) -> bool:
        return self is IngestionType.ALL


# current status -> statuses it may move to
ALLOWED_TRANSITIONS: Dict[Optional[IngestionStatus], FrozenSet[IngestionStatus]] = {
    None: frozenset({IngestionStatus.QUEUED}),
    IngestionStatus.QUEUED: frozenset({IngestionStatus.QUEUED, IngestionStatus.RUNNING,
                                       IngestionStatus.FAILED}),
    IngestionStatus.RUNNING: frozenset({IngestionStatus.COMPLETED, IngestionStatus.FAILED}),
    IngestionStatus.COMPLETED: frozenset({IngestionStatus.QUEUED}),
    IngestionStatus.FAILED: frozenset({IngestionStatus.QUEUED}),
}


def can_transition(current: Optional[IngestionStatus], target: IngestionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CoverageRecord:
    """Completeness of one symbol on one trading day."""

    symbol: str
    date: str
    has_messages: bool = False
    has_analytics: bool = False
    has_price: bool = False
    message_count: int = 0
    ingestion_status: Optional[IngestionStatus] = None
    ingestion_type: Optional[IngestionType] = None
    lease_expires_at: Optional[datetime] = None
    error_message: Optional[str] = None
    last_updated: Optional[datetime] = None

    @property
    def day(self) -> date_type:
        return date_type.fromisoformat(self.date)

    def flags(self) -> tuple:
        """Derived coverage values; status columns excluded."""
        return (self.has_messages, self.has_analytics, self.has_price, self.message_count)

    def missing_categories(self) -> List[str]:
        missing = []
        if not self.has_messages:
            missing.append(IngestionType.MESSAGES.value)
        if not self.has_analytics:
            missing.append(IngestionType.ANALYTICS.value)
        if not self.has_price:
            missing.append(IngestionType.PRICE.value)
        return missing

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "symbol": self.symbol,
            "date": self.date,
            "has_messages": self.has_messages,
            "has_analytics": self.has_analytics,
            "has_price": self.has_price,
            "message_count": self.message_count,
            "ingestion_status": self.ingestion_status.value if self.ingestion_status else None,
            "ingestion_type": self.ingestion_type.value if self.ingestion_type else None,
            "lease_expires_at": _iso(self.lease_expires_at),
            "error_message": self.error_message,
            "last_updated": _iso(self.last_updated),
        }

    @classmethod
    def from_db_row(cls, row: dict) -> CoverageRecord:
        """Create instance from a RealDictCursor row."""
        day = row["date"]
        status = row.get("ingestion_status")
        ingestion_type = row.get("ingestion_type")
        return cls(
            symbol=row["symbol"],
            date=day.isoformat() if hasattr(day, "isoformat") else str(day),
            has_messages=bool(row.get("has_messages")),
            has_analytics=bool(row.get("has_analytics")),
            has_price=bool(row.get("has_price")),
            message_count=int(row.get("message_count") or 0),
            ingestion_status=IngestionStatus(status) if status else None,
            ingestion_type=IngestionType(ingestion_type) if ingestion_type else None,
            lease_expires_at=row.get("lease_expires_at"),
            error_message=row.get("error_message"),
            last_updated=row.get("last_updated"),
        )


@dataclass
class GapWindow:
    """A business date with at least one missing category."""

    symbol: str
    date: str
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"symbol": self.symbol, "date": self.date, "missing": list(self.missing)}
