"""
Record Store Gateway - dual-source fallback.

Every read runs one whole loader against one source:

1. primary, bounded by `primary_timeout`
2. on any error or timeout, the secondary (if configured), bounded by
   `secondary_timeout`
3. if both fail, an explicit empty value

The outcome is a `SourceResult` whose `kind` says which of the three
happened. Domain errors raised by a loader (bad input, missing entity) are not
source failures and propagate unchanged.

Writes never fall back: they go to the primary or fail.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar, Union

import structlog
from prometheus_client import Counter, Histogram

from src.config.settings import Settings
from src.domain.errors import BackofficeError, SourceUnavailableError
from src.domain.models import Customer, Order, Product
from src.domain.windows import TimeWindow
from src.gateway.base import CustomerFilter, OrderFilter, ProductFilter, RecordSource

logger = structlog.get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")


# =============================================================================
# METRICS
# =============================================================================

SOURCE_READS = Counter(
    "backoffice_source_reads_total",
    "Record store reads by serving source",
    ["operation", "source"],
)

SOURCE_READ_LATENCY = Histogram(
    "backoffice_source_read_duration_seconds",
    "Record store read latency including fallback",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0],
)


# =============================================================================
# RESULT ENVELOPE
# =============================================================================

class SourceKind(str, Enum):
    """Which source served a read"""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    UNAVAILABLE = "unavailable"


@dataclass
class SourceResult(Generic[T]):
    """
    Tagged read result.

    `degraded` is true whenever the primary did not serve the data: either
    the mirror did (possibly stale) or nothing did and `data` is the empty
    value.
    """
    data: T
    kind: SourceKind
    errors: List[str] = field(default_factory=list)
    cached_at: Optional[datetime] = None

    @property
    def degraded(self) -> bool:
        return self.kind != SourceKind.PRIMARY

    @property
    def available(self) -> bool:
        return self.kind != SourceKind.UNAVAILABLE

    def map(self, fn: Callable[[T], U]) -> "SourceResult[U]":
        return SourceResult(data=fn(self.data), kind=self.kind, errors=list(self.errors), cached_at=self.cached_at)

    def envelope(self, data: Any = None) -> Dict[str, Any]:
        """JSON-ready response body"""
        return {
            "data": self.data if data is None else data,
            "source": self.kind.value,
            "degraded": self.degraded,
            "errors": self.errors,
            "cached_at": self.cached_at.isoformat() if self.cached_at else None,
        }

    @classmethod
    def combine(cls, parts: Dict[str, "SourceResult[Any]"]) -> "SourceResult[Dict[str, Any]]":
        """Merge several results; the worst kind wins"""
        order = [SourceKind.PRIMARY, SourceKind.SECONDARY, SourceKind.UNAVAILABLE]
        kind = max((part.kind for part in parts.values()), key=order.index, default=SourceKind.PRIMARY)
        errors = [error for part in parts.values() for error in part.errors]
        return cls(data={name: part.data for name, part in parts.items()}, kind=kind, errors=errors)


def describe_error(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return str(error) or type(error).__name__


# =============================================================================
# GATEWAY
# =============================================================================

class RecordStoreGateway:
    """
    Read gateway over a primary and an optional secondary source.

    Example:
        gateway = RecordStoreGateway(SqlRecordSource(factory), SheetsMirrorSource(path))
        result = await gateway.query_orders(window=current)
        if result.degraded:
            ...
    """

    def __init__(
        self,
        primary: RecordSource,
        secondary: Optional[RecordSource] = None,
        primary_timeout: float = 5.0,
        secondary_timeout: float = 20.0,
    ):
        self.primary = primary
        self.secondary = secondary
        self.primary_timeout = primary_timeout
        self.secondary_timeout = secondary_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        primary: RecordSource,
        secondary: Optional[RecordSource] = None,
    ) -> "RecordStoreGateway":
        return cls(
            primary=primary,
            secondary=secondary,
            primary_timeout=settings.gateway.primary_timeout_seconds,
            secondary_timeout=settings.gateway.secondary_timeout_seconds,
        )

    @property
    def max_latency(self) -> float:
        """Worst-case latency of one read"""
        if self.secondary is None:
            return self.primary_timeout
        return self.primary_timeout + self.secondary_timeout

    async def run(
        self,
        operation: str,
        loader: Callable[[RecordSource], Awaitable[T]],
        empty: Union[T, Callable[[], T]],
    ) -> SourceResult[T]:
        """
        Run `loader` against the primary, then the secondary.

        Args:
            operation: Name used in logs and metrics
            loader: Coroutine function computing the whole result from one source
            empty: Value (or factory) returned when no source could serve
        """
        candidates = [(SourceKind.PRIMARY, self.primary, self.primary_timeout)]
        if self.secondary is not None:
            candidates.append((SourceKind.SECONDARY, self.secondary, self.secondary_timeout))

        errors: List[str] = []
        start = time.perf_counter()
        try:
            for kind, source, timeout in candidates:
                try:
                    data = await asyncio.wait_for(loader(source), timeout=timeout)
                except SourceUnavailableError as e:
                    errors.append(f"{source.name}: {describe_error(e)}")
                except BackofficeError:
                    raise
                except Exception as e:
                    errors.append(f"{source.name}: {describe_error(e)}")
                    logger.warning(
                        "Record source failed",
                        operation=operation,
                        source=source.name,
                        error=describe_error(e),
                        error_type=type(e).__name__,
                    )
                else:
                    SOURCE_READS.labels(operation=operation, source=kind.value).inc()
                    if kind == SourceKind.SECONDARY:
                        logger.warning("Served from secondary source", operation=operation, errors=errors)
                    return SourceResult(data=data, kind=kind, errors=errors)

            SOURCE_READS.labels(operation=operation, source=SourceKind.UNAVAILABLE.value).inc()
            logger.error("All record sources failed", operation=operation, errors=errors)
            value = empty() if callable(empty) else empty
            return SourceResult(data=value, kind=SourceKind.UNAVAILABLE, errors=errors)
        finally:
            SOURCE_READ_LATENCY.labels(operation=operation).observe(time.perf_counter() - start)

    # --- convenience reads -------------------------------------------------

    async def query_orders(
        self,
        filter: Optional[OrderFilter] = None,
        window: Optional[TimeWindow] = None,
    ) -> SourceResult[List[Order]]:
        return await self.run("query_orders", lambda source: source.query_orders(filter, window), list)

    async def query_customers(self, filter: Optional[CustomerFilter] = None) -> SourceResult[List[Customer]]:
        return await self.run("query_customers", lambda source: source.query_customers(filter), list)

    async def query_products(self, filter: Optional[ProductFilter] = None) -> SourceResult[List[Product]]:
        return await self.run("query_products", lambda source: source.query_products(filter), list)

    # --- writes ------------------------------------------------------------

    @property
    def writer(self) -> RecordSource:
        return self.primary

    async def ensure_writable(self) -> None:
        """
        Check the primary can take writes.

        Raises:
            SourceUnavailableError: primary is read-only, unreachable or slow
        """
        if self.primary.read_only:
            raise SourceUnavailableError("Primary record source is read-only", {"source": self.primary.name})
        try:
            await asyncio.wait_for(self.primary.ping(), timeout=self.primary_timeout)
        except Exception as e:
            logger.error("Primary record source not writable", error=describe_error(e))
            raise SourceUnavailableError(
                f"Primary record source unavailable: {describe_error(e)}",
                {"source": self.primary.name},
            ) from e

    async def health(self) -> Dict[str, Dict[str, Any]]:
        """Ping every configured source"""
        sources = {"primary": self.primary}
        if self.secondary is not None:
            sources["secondary"] = self.secondary

        report: Dict[str, Dict[str, Any]] = {}
        for label, source in sources.items():
            timeout = self.primary_timeout if label == "primary" else self.secondary_timeout
            start = time.perf_counter()
            try:
                await asyncio.wait_for(source.ping(), timeout=timeout)
                report[label] = {
                    "status": "healthy",
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                }
            except Exception as e:
                report[label] = {"status": "unhealthy", "error": describe_error(e)}
        return report
