"""
Unit Tests - Bulk Batch Executor
"""
import pytest

from src.analytics.counters import CounterService
from src.bulk.executor import (
    BulkExecutor,
    BulkItemFailure,
    BulkItemSuccess,
    BulkOperationResult,
    parse_entity_type,
    prepare_ids,
)
from src.bulk.mutations import AddFlag, CancelOrder, RefundOrder, SoftDelete, StatusChange
from src.domain.errors import SourceUnavailableError, ValidationError
from src.domain.models import AuditOutcome, CustomerStatus, EntityType, OrderStatus, PaymentStatus, Severity
from src.gateway.fallback import RecordStoreGateway

from tests.factories import FailingRecordSource, InMemoryRecordSource, make_order


class RecordingCache:
    def __init__(self):
        self.invalidations = 0

    async def invalidate_all(self):
        self.invalidations += 1
        return 0


class TestPrepareIds:
    def test_strips_and_dedupes_keeping_first(self):
        assert prepare_ids([" C2", "C1", "C2 ", "C1"], max_batch_size=10) == ["C2", "C1"]

    @pytest.mark.parametrize("ids", [[], ["C1", "  "]])
    def test_empty_or_blank_rejected(self, ids):
        with pytest.raises(ValidationError):
            prepare_ids(ids, max_batch_size=10)

    def test_limit_counts_unique_ids(self):
        assert prepare_ids(["A", "A", "B"], max_batch_size=2) == ["A", "B"]
        with pytest.raises(ValidationError):
            prepare_ids(["A", "B", "C"], max_batch_size=2)

    @pytest.mark.parametrize("value,expected", [("users", EntityType.CUSTOMER), ("Orders", EntityType.ORDER)])
    def test_entity_aliases(self, value, expected):
        assert parse_entity_type(value) == expected

    def test_unknown_entity(self):
        with pytest.raises(ValidationError):
            parse_entity_type("invoices")


class TestHttpStatus:
    def test_status_codes(self):
        ok = BulkItemSuccess(id="A")
        bad = BulkItemFailure(id="B", error="x", error_type="NotFoundError")

        assert BulkOperationResult(entity_type="order", action="X", successful=[ok]).http_status == 200
        assert BulkOperationResult(entity_type="order", action="X", successful=[ok], failed=[bad]).http_status == 207
        assert BulkOperationResult(entity_type="order", action="X", failed=[bad]).http_status == 422


class TestExecute:
    """Tests for per-item isolation and the audit trail"""

    async def test_mixed_batch_isolates_failures(self, executor, seeded_source, audit_sink):
        seeded_source.fail_writes_for.add("C2")

        result = await executor.execute("users", ["C1", "C404", "C2"], StatusChange(status="banned"), actor="admin-7")

        assert [item.id for item in result.successful] == ["C1"]
        assert {item.id: item.error_type for item in result.failed} == {
            "C404": "NotFoundError",
            "C2": "ConnectionError",
        }
        assert result.total_processed == 3
        assert result.http_status == 207
        assert result.audit_complete

        assert seeded_source.customers["C1"].status == CustomerStatus.BANNED
        assert seeded_source.customers["C2"].status == CustomerStatus.ACTIVE

        assert len(audit_sink.entries) == 4
        assert audit_sink.for_resource("C1")[0].outcome == AuditOutcome.SUCCESS
        assert audit_sink.for_resource("C1")[0].severity == Severity.HIGH
        assert audit_sink.for_resource("C2")[0].outcome == AuditOutcome.FAILED
        assert audit_sink.for_resource("C2")[0].severity == Severity.LOW
        assert audit_sink.entries[-1].resource_id is None

        summary = audit_sink.summaries[0]
        assert summary.action == "CUSTOMER_STATUS_CHANGE_SUMMARY"
        assert summary.changes["total"] == 3
        assert summary.changes["succeeded"] == 1
        assert summary.changes["failed"] == 2
        assert summary.changes["mutation"]["kind"] == "status_change"
        assert summary.outcome == AuditOutcome.FAILED
        assert all(entry.actor_id == "admin-7" and entry.bulk for entry in audit_sink.entries)

    async def test_all_succeeded(self, executor, audit_sink):
        result = await executor.execute("orders", ["O1", "O2"], AddFlag(type="review", reason="spot check"), actor="a")

        assert result.http_status == 200
        assert result.success_count == 2
        assert result.successful[0].state["open_flags"] == 1
        assert audit_sink.summaries[0].outcome == AuditOutcome.SUCCESS

    async def test_all_failed(self, executor):
        result = await executor.execute("orders", ["O1", "O4"], CancelOrder(), actor="a")

        assert result.http_status == 422
        assert {item.error_type for item in result.failed} == {"InvariantViolation"}

    async def test_duplicates_processed_once(self, executor, audit_sink):
        result = await executor.execute("orders", ["O1", "O1", " O1"], AddFlag(type="t", reason="r"), actor="a")

        assert result.total_processed == 1
        assert len(audit_sink.for_resource("O1")) == 1

    async def test_soft_deleted_entity_is_not_found(self, executor, seeded_source):
        first = await executor.execute("customers", ["C1"], SoftDelete(), actor="a")
        second = await executor.execute("customers", ["C1"], SoftDelete(), actor="a")

        assert first.http_status == 200
        assert seeded_source.customers["C1"].deleted_at is not None
        assert second.failed[0].error_type == "NotFoundError"

    async def test_refund_pairs_statuses(self, executor, seeded_source):
        result = await executor.execute("orders", ["O2"], RefundOrder(reason="damaged"), actor="a")

        assert result.http_status == 200
        assert seeded_source.orders["O2"].payment_status == PaymentStatus.REFUNDED
        assert seeded_source.orders["O2"].status == OrderStatus.CANCELLED
        assert result.successful[0].state["payment_status"] == "refunded"


class TestRejectedUpFront:
    """Nothing is written when the request itself is invalid"""

    async def test_wrong_mutation_for_entity(self, executor, audit_sink):
        with pytest.raises(ValidationError):
            await executor.execute("customers", ["C1"], CancelOrder(), actor="a")
        assert audit_sink.entries == []

    async def test_blank_actor(self, executor):
        with pytest.raises(ValidationError):
            await executor.execute("orders", ["O1"], AddFlag(type="t", reason="r"), actor=" ")

    async def test_batch_limit(self, executor):
        with pytest.raises(ValidationError):
            await executor.execute("orders", [f"O{i}" for i in range(51)], AddFlag(type="t", reason="r"), actor="a")

    async def test_unwritable_primary(self, audit_sink):
        gateway = RecordStoreGateway(FailingRecordSource(), InMemoryRecordSource(name="secondary"))
        executor = BulkExecutor(gateway, audit_sink)

        with pytest.raises(SourceUnavailableError):
            await executor.execute("orders", ["O1"], AddFlag(type="t", reason="r"), actor="a")
        assert audit_sink.entries == []


class TestAuditFailures:
    async def test_audit_failure_after_persist_reported(self, executor, seeded_source, audit_sink):
        audit_sink.fail_for.add("C1")

        result = await executor.execute("customers", ["C1", "C2"], StatusChange(status="suspended"), actor="a")

        assert result.http_status == 207
        failure = result.failed[0]
        assert failure.id == "C1"
        assert failure.error.startswith("Change persisted but audit entry could not be written")
        # The write itself is not rolled back
        assert seeded_source.customers["C1"].status == CustomerStatus.SUSPENDED

    async def test_summary_failure_marks_audit_incomplete(self, executor, audit_sink):
        audit_sink.fail_summary = True

        result = await executor.execute("orders", ["O1"], AddFlag(type="t", reason="r"), actor="a")

        assert result.http_status == 200
        assert not result.audit_complete
        assert audit_sink.summaries == []

    async def test_failed_items_not_audited_when_disabled(self, gateway, audit_sink):
        executor = BulkExecutor(gateway, audit_sink, audit_failed_items=False)

        await executor.execute("orders", ["O404"], AddFlag(type="t", reason="r"), actor="a")

        assert audit_sink.for_resource("O404") == []
        assert len(audit_sink.summaries) == 1


class TestSideEffects:
    @staticmethod
    def with_totals(source, orders, spent):
        source.customers["C1"] = source.customers["C1"].model_copy(update={"total_orders": orders, "total_spent": spent})

    @pytest.mark.parametrize("mode", ["recompute", "increment"])
    async def test_completion_updates_product_counters(self, seeded_source, gateway, audit_sink, mode):
        seeded_source.orders["O5"] = make_order("O5", "C1", 250.0, status=OrderStatus.SHIPPED)
        self.with_totals(seeded_source, 3, 1750.0)
        executor = BulkExecutor(gateway, audit_sink, counters=CounterService(seeded_source, mode=mode))

        await executor.execute("orders", ["O5"], StatusChange(status="delivered"), actor="a")

        assert seeded_source.customers["C1"].total_orders == 3
        assert seeded_source.customers["C1"].total_spent == 1750.0
        assert seeded_source.products["SKU-1"].analytics.purchases == 11

    @pytest.mark.parametrize("mode", ["recompute", "increment"])
    async def test_refund_of_completed_order_reverses_counters(self, seeded_source, gateway, audit_sink, mode):
        self.with_totals(seeded_source, 2, 1500.0)
        executor = BulkExecutor(gateway, audit_sink, counters=CounterService(seeded_source, mode=mode))

        result = await executor.execute("orders", ["O1"], RefundOrder(reason="damaged"), actor="a")

        assert result.success_count == 1
        assert seeded_source.customers["C1"].total_orders == 1
        assert seeded_source.customers["C1"].total_spent == 500.0
        assert seeded_source.products["SKU-1"].analytics.purchases == 9

    @pytest.mark.parametrize("mode", ["recompute", "increment"])
    async def test_cancel_removes_order_from_totals(self, seeded_source, gateway, audit_sink, mode):
        self.with_totals(seeded_source, 2, 1500.0)
        executor = BulkExecutor(gateway, audit_sink, counters=CounterService(seeded_source, mode=mode))

        await executor.execute("orders", ["O2"], CancelOrder(reason="changed mind"), actor="a")

        assert seeded_source.customers["C1"].total_orders == 1
        assert seeded_source.customers["C1"].total_spent == 1000.0
        # Never sold, so product counters stay put
        assert seeded_source.products["SKU-1"].analytics.purchases == 10

    async def test_non_completion_leaves_counters(self, seeded_source, gateway, audit_sink):
        executor = BulkExecutor(gateway, audit_sink, counters=CounterService(seeded_source, mode="increment"))

        await executor.execute("orders", ["O2"], StatusChange(status="shipped"), actor="a")

        assert seeded_source.customers["C1"].total_orders == 0

    async def test_cache_invalidated_only_after_success(self, gateway, audit_sink):
        cache = RecordingCache()
        executor = BulkExecutor(gateway, audit_sink, cache=cache)

        await executor.execute("orders", ["O404"], AddFlag(type="t", reason="r"), actor="a")
        assert cache.invalidations == 0

        await executor.execute("orders", ["O1"], AddFlag(type="t", reason="r"), actor="a")
        assert cache.invalidations == 1

