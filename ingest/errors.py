"""Exception hierarchy for upstream access and ingestion."""
from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""


class UpstreamError(IngestError):
    """
    Failure talking to a third-party provider.

    Attributes:
        status: HTTP status code (None for network failures)
        retry_after: Provider supplied Retry-After hint in seconds
        circuit_trip: Whether this failure signals upstream distress
        retryable: Whether the retry policy may try again
    """

    circuit_trip = False
    retryable = False

    def __init__(self, message: str, status: Optional[int] = None,
                 retry_after: Optional[float] = None, upstream: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after
        self.upstream = upstream


class UpstreamHTTPError(UpstreamError):
    """Non-retryable 4xx response (bad symbol, bad params)."""


class UpstreamNotFoundError(UpstreamHTTPError):
    """Provider has no data for the requested symbol."""

    def __init__(self, message: str, upstream: Optional[str] = None):
        super().__init__(message, status=404, upstream=upstream)


class UpstreamRateLimitError(UpstreamError):
    """HTTP 429 from the provider."""

    circuit_trip = True
    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None,
                 upstream: Optional[str] = None):
        super().__init__(message, status=429, retry_after=retry_after, upstream=upstream)


class UpstreamServerError(UpstreamError):
    """HTTP 5xx from the provider."""

    circuit_trip = True


class UpstreamNetworkError(UpstreamError):
    """Connection failure or timeout before a response arrived."""

    circuit_trip = True
    retryable = True


class MalformedResponseError(UpstreamError):
    """Response body could not be parsed (HTML error page, truncated JSON)."""

    circuit_trip = True


class CircuitOpenError(IngestError):
    """Raised when the circuit for an upstream rejects the call."""

    def __init__(self, circuit_id: str, retry_after: int):
        super().__init__(f"Circuit {circuit_id} is open; retry after {retry_after}s")
        self.circuit_id = circuit_id
        self.retry_after = retry_after


class InvalidTransitionError(IngestError):
    """Coverage ingestion status write that contradicts the stored status."""

    def __init__(self, symbol: str, date: str, current, target):
        current_label = current.value if current is not None else None
        super().__init__(
            f"Cannot move {symbol} {date} from {current_label} to {target.value}"
        )
        self.symbol = symbol
        self.date = date
        self.current = current
        self.target = target


class IngestionError(IngestError):
    """An ingestion job failed; the coverage record was marked failed."""

    def __init__(self, symbol: str, date: str, ingestion_type: str, cause: Exception):
        super().__init__(f"Ingestion {ingestion_type} for {symbol} {date} failed: {cause}")
        self.symbol = symbol
        self.date = date
        self.ingestion_type = ingestion_type
        self.cause = cause


def is_circuit_trip_error(error: BaseException) -> bool:
    """True when the failure should count toward the circuit breaker."""
    return isinstance(error, UpstreamError) and error.circuit_trip


def is_circuit_trip_status(status: int, non_json: bool = False) -> bool:
    """Rate limits, server errors and non-JSON bodies trip the breaker."""
    return status == 429 or status >= 500 or non_json
