"""
Orders API Endpoints

Single-order admin actions. Each runs through the bulk executor with one id,
so it gets the same validation, audit entries and counter updates as a batch.
"""

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from src.bulk.executor import BulkExecutor
from src.bulk.mutations import AddFlag, BaseMutation, CancelOrder, RefundOrder, ResolveFlag, StatusChange
from src.domain.models import EntityType, Severity
from src.serving.api.dependencies import get_actor, get_executor

router = APIRouter()
logger = structlog.get_logger(__name__)

# Per-item error class -> HTTP status
FAILURE_STATUS = {
    "NotFoundError": 404,
    "InvariantViolation": 409,
    "ValidationError": 400,
}


class StatusRequest(BaseModel):
    status: str
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class RefundRequest(BaseModel):
    amount: Optional[float] = Field(None, description="Full refund when omitted")
    reason: Optional[str] = None
    refund_type: Optional[Literal["full", "partial"]] = None


class FlagRequest(BaseModel):
    type: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    severity: Severity = Severity.MEDIUM


class ResolveRequest(BaseModel):
    notes: Optional[str] = None


async def _run_single(executor: BulkExecutor, order_id: str, mutation: BaseMutation, actor: str) -> Any:
    result = await executor.execute(EntityType.ORDER, [order_id], mutation, actor)
    if result.failed:
        failure = result.failed[0]
        status_code = FAILURE_STATUS.get(failure.error_type, 500)
        logger.info("Order action rejected", order_id=order_id, status_code=status_code, error=failure.error)
        return JSONResponse(
            status_code=status_code,
            content={"error": failure.error_type, "detail": failure.error},
        )
    success = result.successful[0]
    return {"id": success.id, "state": success.state, "changes": success.changes}


@router.post("/{order_id}/status")
async def change_order_status(
    order_id: str,
    body: StatusRequest,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    return await _run_single(executor, order_id, StatusChange(status=body.status, reason=body.reason), actor)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: Optional[CancelRequest] = None,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    reason = body.reason if body is not None else None
    return await _run_single(executor, order_id, CancelOrder(reason=reason), actor)


@router.post("/{order_id}/refund")
async def refund_order(
    order_id: str,
    body: RefundRequest,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    mutation = RefundOrder(amount=body.amount, reason=body.reason, refund_type=body.refund_type)
    return await _run_single(executor, order_id, mutation, actor)


@router.post("/{order_id}/flags")
async def flag_order(
    order_id: str,
    body: FlagRequest,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    mutation = AddFlag(type=body.type, reason=body.reason, severity=body.severity)
    return await _run_single(executor, order_id, mutation, actor)


@router.post("/{order_id}/flags/{index}/resolve")
async def resolve_order_flag(
    order_id: str,
    index: int = Path(..., ge=0),
    body: Optional[ResolveRequest] = None,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    notes = body.notes if body is not None else None
    return await _run_single(executor, order_id, ResolveFlag(index=index, notes=notes), actor)
