"""
Data models for the sentiment ingestion system.
"""
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, List, Any


@dataclass
class PricePoint:
    """Normalized price point"""
    timestamp: str
    price: float
    open: float
    high: float
    low: float
    volume: int

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return asdict(self)


@dataclass
class PriceQuote:
    """Normalized quote response for a symbol and time range"""
    symbol: str
    prices: List[PricePoint] = field(default_factory=list)
    current_price: Optional[float] = None
    previous_close: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    market_state: str = "UNKNOWN"

    def to_dict(self) -> Dict:
        """Convert to the camelCase payload served to callers"""
        return {
            'symbol': self.symbol,
            'prices': [p.to_dict() for p in self.prices],
            'currentPrice': self.current_price,
            'previousClose': self.previous_close,
            'change': self.change,
            'changePercent': self.change_percent,
            'marketState': self.market_state,
        }


@dataclass
class DailyBar:
    """Daily OHLCV row destined for price_history"""
    symbol: str
    date: str
    close: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: Optional[int] = None
    source: str = "yahoo_backfill"


@dataclass
class FeedMessage:
    """Single message from the social feed"""
    id: str
    body: str
    created_at: str
    sentiment: Optional[str] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> 'FeedMessage':
        sentiment = raw.get('sentiment') or {}
        basic = sentiment.get('basic') if isinstance(sentiment, dict) else sentiment
        return cls(
            id=str(raw.get('id', '')),
            body=raw.get('body') or '',
            created_at=raw.get('created_at') or '',
            sentiment=basic.lower() if isinstance(basic, str) else None,
        )


@dataclass
class SentimentAggregate:
    """Daily sentiment aggregate computed from messages"""
    sentiment_score: int
    bullish_count: int
    bearish_count: int
    neutral_count: int

    @property
    def total(self) -> int:
        return self.bullish_count + self.bearish_count + self.neutral_count

    @classmethod
    def from_messages(cls, messages: List[FeedMessage]) -> 'SentimentAggregate':
        """
        Score messages: 0 = all bearish, 50 = neutral, 100 = all bullish.
        """
        bullish = sum(1 for m in messages if m.sentiment == 'bullish')
        bearish = sum(1 for m in messages if m.sentiment == 'bearish')
        neutral = len(messages) - bullish - bearish

        if not messages:
            return cls(sentiment_score=50, bullish_count=0, bearish_count=0, neutral_count=0)

        score = int(((bullish - bearish) / len(messages) + 1) * 50 + 0.5)
        return cls(
            sentiment_score=score,
            bullish_count=bullish,
            bearish_count=bearish,
            neutral_count=neutral,
        )


@dataclass
class AnalyticsResult:
    """Narratives and emotions returned by the analytics service"""
    narratives: List[Dict[str, Any]] = field(default_factory=list)
    emotions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def dominant_narrative(self) -> Optional[str]:
        if not self.narratives:
            return None
        return max(self.narratives, key=lambda n: n.get('count', 0)).get('name')

    @property
    def dominant_emotion(self) -> Optional[str]:
        if not self.emotions:
            return None
        return max(self.emotions, key=lambda e: e.get('score', 0)).get('name')
