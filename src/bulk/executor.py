"""
Bulk Batch Executor

Applies one mutation to many entities with per-item isolation:

    for each id (concurrently, at most `max_workers` at a time):
        load -> mutate -> persist -> audit
        any error is recorded against that id only

    then one summary audit entry with the final counts

Every input id ends up in exactly one of `successful` / `failed`. There is no
shared transaction: earlier successes are never rolled back by a later
failure, and nothing is retried.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

import structlog
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, Field, computed_field

from src.analytics.counters import CounterService
from src.bulk.audit import AuditSink
from src.bulk.mutations import BaseMutation
from src.config.settings import Settings
from src.domain.errors import NotFoundError, ValidationError
from src.domain.models import (
    AuditLogEntry,
    AuditOutcome,
    Customer,
    EntityType,
    Order,
    OrderStatus,
    Product,
    Severity,
    utcnow,
)
from src.domain.orders import COMPLETION_STATUSES, is_completion
from src.gateway.base import RecordSource
from src.gateway.fallback import RecordStoreGateway
from src.serving.cache import MetricsCache

logger = structlog.get_logger(__name__)


# =============================================================================
# METRICS
# =============================================================================

BULK_ITEMS = Counter(
    "backoffice_bulk_items_total",
    "Bulk operation items by outcome",
    ["entity_type", "action", "outcome"],
)

BULK_DURATION = Histogram(
    "backoffice_bulk_batch_duration_seconds",
    "Bulk batch duration",
    ["entity_type"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)


# =============================================================================
# RESULT
# =============================================================================

class BulkItemSuccess(BaseModel):
    id: str
    state: Dict[str, Any] = Field(default_factory=dict)
    changes: Dict[str, Any] = Field(default_factory=dict)


class BulkItemFailure(BaseModel):
    id: str
    error: str
    error_type: str


class BulkOperationResult(BaseModel):
    """Itemized outcome of one batch call"""
    entity_type: str
    action: str
    successful: List[BulkItemSuccess] = Field(default_factory=list)
    failed: List[BulkItemFailure] = Field(default_factory=list)
    audit_complete: bool = True
    duration_ms: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_processed(self) -> int:
        return len(self.successful) + len(self.failed)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_count(self) -> int:
        return len(self.successful)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def http_status(self) -> int:
        """200 all succeeded, 207 mixed, 422 all failed"""
        if not self.failed:
            return 200
        if self.successful:
            return 207
        return 422


# =============================================================================
# GENERIC EXECUTOR
# =============================================================================

async def run_batch(
    ids: List[str],
    *,
    entity_label: str,
    action: str,
    load: Callable[[str], Awaitable[Optional[Any]]],
    mutate: Callable[[Any], Tuple[Any, Dict[str, Any]]],
    persist: Callable[[Any], Awaitable[Any]],
    audit_entry_for: Callable[[str, AuditOutcome, Dict[str, Any]], AuditLogEntry],
    summary_entry_for: Callable[[int, int], AuditLogEntry],
    audit_sink: AuditSink,
    snapshot: Callable[[Any], Dict[str, Any]] = lambda entity: {},
    on_success: Optional[Callable[[Any, Any], Awaitable[None]]] = None,
    max_workers: int = 8,
    audit_failed_items: bool = True,
) -> BulkOperationResult:
    """
    Apply `mutate` to each id with isolated failure handling.

    Args:
        ids: Entity ids, already validated and de-duplicated
        entity_label: Used in "not found" messages
        load: Fetch one entity, None when missing
        mutate: Pure function returning (updated entity, change payload)
        persist: Write the updated entity
        audit_entry_for: Build the per-item entry from (id, outcome, changes)
        summary_entry_for: Build the batch entry from (succeeded, failed)
        on_success: Side effect after a persisted change, errors only logged

    Returns:
        BulkOperationResult with every id in exactly one list
    """
    entity_type = entity_label.lower()
    semaphore = asyncio.Semaphore(max_workers)
    start = time.perf_counter()

    async def process(entity_id: str) -> Union[BulkItemSuccess, BulkItemFailure]:
        async with semaphore:
            try:
                entity = await load(entity_id)
                if entity is None:
                    raise NotFoundError(entity_label, entity_id)
                updated, changes = mutate(entity)
                await persist(updated)
            except Exception as e:
                failure = BulkItemFailure(id=entity_id, error=str(e) or type(e).__name__, error_type=type(e).__name__)
                logger.info("Bulk item failed", action=action, id=entity_id, error=failure.error, error_type=failure.error_type)
                BULK_ITEMS.labels(entity_type=entity_type, action=action, outcome="failed").inc()
                if audit_failed_items:
                    try:
                        await audit_sink.append(audit_entry_for(
                            entity_id,
                            AuditOutcome.FAILED,
                            {"error": failure.error, "error_type": failure.error_type},
                        ))
                    except Exception as audit_error:
                        logger.error("Audit write failed for failed item", action=action, id=entity_id, error=str(audit_error))
                return failure

            try:
                await audit_sink.append(audit_entry_for(entity_id, AuditOutcome.SUCCESS, changes))
            except Exception as e:
                # The change is persisted; report the missing audit rather than a clean success
                logger.error("Audit write failed after persist", action=action, id=entity_id, error=str(e))
                BULK_ITEMS.labels(entity_type=entity_type, action=action, outcome="failed").inc()
                return BulkItemFailure(
                    id=entity_id,
                    error=f"Change persisted but audit entry could not be written: {e}",
                    error_type=type(e).__name__,
                )

            if on_success is not None:
                try:
                    await on_success(entity, updated)
                except Exception as e:
                    logger.error("Post-success hook failed", action=action, id=entity_id, error=str(e))

            BULK_ITEMS.labels(entity_type=entity_type, action=action, outcome="success").inc()
            return BulkItemSuccess(id=entity_id, state=snapshot(updated), changes=changes)

    outcomes = await asyncio.gather(*(process(entity_id) for entity_id in ids))

    result = BulkOperationResult(
        entity_type=entity_type,
        action=action,
        successful=[o for o in outcomes if isinstance(o, BulkItemSuccess)],
        failed=[o for o in outcomes if isinstance(o, BulkItemFailure)],
    )

    # Summary goes last so it reflects final counts
    try:
        await audit_sink.append(summary_entry_for(result.success_count, result.failure_count))
    except Exception as e:
        result.audit_complete = False
        logger.error("Bulk summary audit write failed", action=action, error=str(e))

    elapsed = time.perf_counter() - start
    result.duration_ms = round(elapsed * 1000, 2)
    BULK_DURATION.labels(entity_type=entity_type).observe(elapsed)
    logger.info(
        "Bulk operation finished",
        action=action,
        total=result.total_processed,
        succeeded=result.success_count,
        failed=result.failure_count,
        duration_ms=result.duration_ms,
    )
    return result


# =============================================================================
# ENTITY HANDLERS
# =============================================================================

def order_snapshot(order: Order) -> Dict[str, Any]:
    return {
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "final_amount": order.final_amount,
        "open_flags": sum(1 for flag in order.flags if not flag.resolved),
        "deleted": order.is_deleted,
    }


def customer_snapshot(customer: Customer) -> Dict[str, Any]:
    return {
        "status": customer.status.value,
        "segmentation": customer.segmentation.value,
        "open_flags": sum(1 for flag in customer.flags if not flag.resolved),
        "deleted": customer.is_deleted,
    }


def product_snapshot(product: Product) -> Dict[str, Any]:
    return {
        "status": product.status.value,
        "available": product.inventory.available,
        "open_flags": sum(1 for flag in product.flags if not flag.resolved),
        "deleted": product.is_deleted,
    }


@dataclass(frozen=True)
class EntityHandler:
    """Binds the generic executor to one entity type"""
    entity_type: EntityType
    label: str
    load: Callable[[RecordSource, str], Awaitable[Optional[Any]]]
    persist: Callable[[RecordSource, Any], Awaitable[Any]]
    snapshot: Callable[[Any], Dict[str, Any]]


HANDLERS: Dict[EntityType, EntityHandler] = {
    EntityType.ORDER: EntityHandler(
        entity_type=EntityType.ORDER,
        label="order",
        load=lambda source, entity_id: source.get_order(entity_id),
        persist=lambda source, entity: source.save_order(entity),
        snapshot=order_snapshot,
    ),
    EntityType.CUSTOMER: EntityHandler(
        entity_type=EntityType.CUSTOMER,
        label="customer",
        load=lambda source, entity_id: source.get_customer(entity_id),
        persist=lambda source, entity: source.save_customer(entity),
        snapshot=customer_snapshot,
    ),
    EntityType.PRODUCT: EntityHandler(
        entity_type=EntityType.PRODUCT,
        label="product",
        load=lambda source, entity_id: source.get_product(entity_id),
        persist=lambda source, entity: source.save_product(entity),
        snapshot=product_snapshot,
    ),
}

ENTITY_ALIASES = {
    "order": EntityType.ORDER,
    "orders": EntityType.ORDER,
    "customer": EntityType.CUSTOMER,
    "customers": EntityType.CUSTOMER,
    "user": EntityType.CUSTOMER,
    "users": EntityType.CUSTOMER,
    "product": EntityType.PRODUCT,
    "products": EntityType.PRODUCT,
}


def parse_entity_type(value: Union[str, EntityType]) -> EntityType:
    if isinstance(value, EntityType):
        return value
    try:
        return ENTITY_ALIASES[value.strip().lower()]
    except (KeyError, AttributeError):
        raise ValidationError(
            f"Unknown entity type '{value}', expected orders, customers or products",
            {"entity_type": value},
        ) from None


def prepare_ids(ids: Iterable[str], max_batch_size: int) -> List[str]:
    """Strip, reject blanks, collapse duplicates keeping first occurrence"""
    cleaned: List[str] = []
    seen = set()
    for raw in ids:
        entity_id = str(raw).strip()
        if not entity_id:
            raise ValidationError("Entity ids must not be blank")
        if entity_id not in seen:
            seen.add(entity_id)
            cleaned.append(entity_id)

    if not cleaned:
        raise ValidationError("At least one id is required")
    if len(cleaned) > max_batch_size:
        raise ValidationError(
            f"Batch of {len(cleaned)} ids exceeds the limit of {max_batch_size}",
            {"count": len(cleaned), "max_batch_size": max_batch_size},
        )
    return cleaned


# =============================================================================
# BULK EXECUTOR
# =============================================================================

class BulkExecutor:
    """
    Entry point for batch mutations from the admin API.

    Example:
        executor = BulkExecutor(gateway, audit_sink)
        result = await executor.execute("users", ["U1", "U2"], StatusChange(status="banned"), actor="admin-7")
        result.http_status  # 200 / 207 / 422
    """

    def __init__(
        self,
        gateway: RecordStoreGateway,
        audit_sink: AuditSink,
        counters: Optional[CounterService] = None,
        cache: Optional[MetricsCache] = None,
        max_workers: int = 8,
        max_batch_size: int = 500,
        audit_failed_items: bool = True,
    ):
        self.gateway = gateway
        self.audit_sink = audit_sink
        self.counters = counters
        self.cache = cache
        self.max_workers = max_workers
        self.max_batch_size = max_batch_size
        self.audit_failed_items = audit_failed_items

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        gateway: RecordStoreGateway,
        audit_sink: AuditSink,
        counters: Optional[CounterService] = None,
        cache: Optional[MetricsCache] = None,
    ) -> "BulkExecutor":
        return cls(
            gateway=gateway,
            audit_sink=audit_sink,
            counters=counters,
            cache=cache,
            max_workers=settings.bulk.max_workers,
            max_batch_size=settings.bulk.max_batch_size,
            audit_failed_items=settings.bulk.audit_failed_items,
        )

    async def execute(
        self,
        entity_type: Union[str, EntityType],
        ids: Iterable[str],
        mutation: BaseMutation,
        actor: str,
    ) -> BulkOperationResult:
        """
        Run `mutation` over `ids`.

        Raises:
            ValidationError: bad entity type, id list, actor or mutation,
                before anything is written
            SourceUnavailableError: the primary store cannot take writes
        """
        entity_type = parse_entity_type(entity_type)
        ids = prepare_ids(ids, self.max_batch_size)
        if not actor or not actor.strip():
            raise ValidationError("An acting admin id is required")
        mutation.validate_for(entity_type)

        await self.gateway.ensure_writable()

        handler = HANDLERS[entity_type]
        source = self.gateway.writer
        action = mutation.action_for(entity_type)
        severity = mutation.severity_for(entity_type)
        now = utcnow()

        logger.info(
            "Bulk operation started",
            action=action,
            entity_type=entity_type.value,
            count=len(ids),
            actor=actor,
        )

        def audit_entry_for(entity_id: str, outcome: AuditOutcome, changes: Dict[str, Any]) -> AuditLogEntry:
            return AuditLogEntry(
                actor_id=actor,
                action=action,
                resource_type=entity_type.value,
                resource_id=entity_id,
                changes=changes,
                severity=severity if outcome == AuditOutcome.SUCCESS else Severity.LOW,
                outcome=outcome,
                bulk=True,
            )

        def summary_entry_for(succeeded: int, failed: int) -> AuditLogEntry:
            return AuditLogEntry(
                actor_id=actor,
                action=f"{action}_SUMMARY",
                resource_type=entity_type.value,
                resource_id=None,
                changes={
                    "total": succeeded + failed,
                    "succeeded": succeeded,
                    "failed": failed,
                    "mutation": mutation.model_dump(mode="json"),
                },
                severity=severity,
                outcome=AuditOutcome.SUCCESS if failed == 0 else AuditOutcome.FAILED,
                bulk=True,
            )

        on_success = None
        if entity_type == EntityType.ORDER and self.counters is not None:
            on_success = self._update_counters

        result = await run_batch(
            ids,
            entity_label=handler.label,
            action=action,
            load=lambda entity_id: handler.load(source, entity_id),
            mutate=lambda entity: mutation.apply(entity, entity_type, actor, now),
            persist=lambda entity: handler.persist(source, entity),
            audit_entry_for=audit_entry_for,
            summary_entry_for=summary_entry_for,
            audit_sink=self.audit_sink,
            snapshot=handler.snapshot,
            on_success=on_success,
            max_workers=self.max_workers,
            audit_failed_items=self.audit_failed_items,
        )

        if result.successful and self.cache is not None:
            await self.cache.invalidate_all()
        return result

    async def _update_counters(self, before: Order, after: Order) -> None:
        if is_completion(before.status, after.status):
            await self.counters.record_order_completion(after)
        elif after.status == OrderStatus.CANCELLED and before.status != OrderStatus.CANCELLED:
            await self.counters.record_order_cancellation(after, was_completed=before.status in COMPLETION_STATUSES)
