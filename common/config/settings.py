"""
Configuration settings for the sentiment ingestion service.
Centralizes all configurable parameters for the proxy, cache, breaker and backfill.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, '')
    return [item.strip().upper() for item in raw.split(',') if item.strip()]


@dataclass(frozen=True)
class CacheTTL:
    """Freshness and retention window for one cache category (seconds)"""
    stale_time: float
    gc_time: float


# Category TTLs. Longer-lived categories change less and tolerate staler reads.
DEFAULT_CACHE_POLICY: Dict[str, CacheTTL] = {
    'quote': CacheTTL(stale_time=5 * 60, gc_time=15 * 60),
    'trending': CacheTTL(stale_time=60, gc_time=5 * 60),
    'messages': CacheTTL(stale_time=15, gc_time=5 * 60),
    'stats': CacheTTL(stale_time=30, gc_time=5 * 60),
    'sentiment': CacheTTL(stale_time=30, gc_time=5 * 60),
    'symbols': CacheTTL(stale_time=60 * 60, gc_time=2 * 60 * 60),
    'analytics': CacheTTL(stale_time=30 * 60, gc_time=60 * 60),
    'history': CacheTTL(stale_time=5 * 60, gc_time=15 * 60),
}


@dataclass
class HTTPConfig:
    """HTTP connection pool configuration"""
    max_connections: int = 50
    timeout: float = 15.0
    rate_limit: int = 10
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )

    def __post_init__(self):
        self.timeout = float(os.getenv('HTTP_TIMEOUT', self.timeout))
        self.rate_limit = int(os.getenv('HTTP_RATE_LIMIT', self.rate_limit))


@dataclass
class CircuitConfig:
    """Circuit breaker thresholds"""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    def __post_init__(self):
        self.failure_threshold = int(os.getenv('CIRCUIT_FAILURE_THRESHOLD', self.failure_threshold))
        self.recovery_timeout = float(os.getenv('CIRCUIT_RECOVERY_TIMEOUT', self.recovery_timeout))


@dataclass
class RetryConfig:
    """Upstream retry/backoff configuration"""
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25

    def __post_init__(self):
        self.max_retries = int(os.getenv('RETRY_MAX_RETRIES', self.max_retries))
        self.base_delay = float(os.getenv('RETRY_BASE_DELAY', self.base_delay))


@dataclass
class CacheConfig:
    """Tiered cache configuration"""
    max_items: int = 100
    trim_ratio: float = 0.8
    default_ttl: float = 30.0
    cleanup_grace: float = 5 * 60
    policy: Dict[str, CacheTTL] = field(default_factory=lambda: dict(DEFAULT_CACHE_POLICY))

    def __post_init__(self):
        self.max_items = int(os.getenv('CACHE_MAX_ITEMS', self.max_items))


@dataclass
class DatabaseConfig:
    """Database configuration (PostgreSQL)"""
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        self.host = self.host or os.getenv('DB_HOST', 'localhost')
        self.port = self.port or int(os.getenv('DB_PORT', '5432'))
        self.database = self.database or os.getenv('DB_NAME', 'sentiment')
        self.user = self.user or os.getenv('DB_USER', 'postgres')
        self.password = self.password or os.getenv('DB_PASSWORD')


@dataclass
class UpstreamConfig:
    """Third-party provider endpoints and credentials"""
    price_url: Optional[str] = None
    stocktwits_url: Optional[str] = None
    stocktwits_api_key: Optional[str] = None
    analytics_url: Optional[str] = None
    analytics_api_key: Optional[str] = None

    def __post_init__(self):
        self.price_url = self.price_url or os.getenv(
            'PRICE_API_URL', 'https://query1.finance.yahoo.com/v8/finance/chart')
        self.stocktwits_url = self.stocktwits_url or os.getenv('STOCKTWITS_BASE_URL')
        if self.stocktwits_api_key is None:
            self.stocktwits_api_key = os.getenv('STOCKTWITS_API_KEY')
        self.analytics_url = self.analytics_url or os.getenv('ANALYTICS_API_URL')
        if self.analytics_api_key is None:
            self.analytics_api_key = os.getenv('ANALYTICS_API_KEY')


@dataclass
class BackfillSettings:
    """Coverage tracking and backfill configuration"""
    min_messages: int = 10
    message_limit: int = 500
    lease_seconds: float = 15 * 60
    max_concurrency: int = 3
    default_days: int = 30
    max_dates_per_run: int = 10
    retention_days: int = 90
    symbols: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.lease_seconds = float(os.getenv('INGESTION_LEASE_SECONDS', self.lease_seconds))
        self.max_concurrency = int(os.getenv('BACKFILL_MAX_CONCURRENCY', self.max_concurrency))
        self.retention_days = int(os.getenv('RETENTION_DAYS', self.retention_days))
        if not self.symbols:
            self.symbols = _env_list('BACKFILL_SYMBOLS')


@dataclass
class IngestionConfig:
    """Complete ingestion service configuration"""
    http: HTTPConfig
    circuit: CircuitConfig
    retry: RetryConfig
    cache: CacheConfig
    database: DatabaseConfig
    upstream: UpstreamConfig
    backfill: BackfillSettings
    debug: bool = False

    @classmethod
    def default(cls):
        """Create default configuration"""
        return cls(
            http=HTTPConfig(),
            circuit=CircuitConfig(),
            retry=RetryConfig(),
            cache=CacheConfig(),
            database=DatabaseConfig(),
            upstream=UpstreamConfig(),
            backfill=BackfillSettings(),
            debug=os.getenv('DEBUG', 'false').lower() == 'true'
        )


# Upstream circuit identifiers
PRICE_CIRCUIT = 'yahoo-finance'
FEED_CIRCUIT = 'stocktwits'
ANALYTICS_CIRCUIT = 'analytics'

# Logical time range -> (provider range, provider interval)
TIME_RANGE_PARAMS = {
    '1H': ('1d', '1m'),
    '6H': ('1d', '5m'),
    '1D': ('1d', '5m'),
    '24H': ('1d', '15m'),
    '7D': ('7d', '1h'),
    '30D': ('1mo', '1h'),
}
DEFAULT_RANGE_PARAMS = ('1d', '1h')
