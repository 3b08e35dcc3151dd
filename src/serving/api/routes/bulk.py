"""
Bulk Operations API

    POST /api/v1/bulk/{entity_type}
    {"ids": ["U1", "U2"], "mutation": {"kind": "status_change", "status": "banned"}}

Responds 200 when every item succeeded, 207 when some failed and 422 when
all failed. The body always lists every id under `successful` or `failed`.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.bulk.executor import BulkExecutor
from src.bulk.mutations import parse_mutation
from src.serving.api.dependencies import get_actor, get_executor

router = APIRouter()


class BulkRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)
    mutation: Dict[str, Any]


@router.get("/audit")
async def list_audit_entries(
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    executor: BulkExecutor = Depends(get_executor),
) -> Dict[str, Any]:
    """Most recent audit entries first"""
    entries = await executor.audit_sink.list_entries(resource_type, resource_id, limit)
    return {"items": entries, "count": len(entries)}


@router.post("/{entity_type}")
async def run_bulk_operation(
    entity_type: str,
    body: BulkRequest,
    actor: str = Depends(get_actor),
    executor: BulkExecutor = Depends(get_executor),
) -> JSONResponse:
    mutation = parse_mutation(body.mutation)
    result = await executor.execute(entity_type, body.ids, mutation, actor)
    return JSONResponse(status_code=result.http_status, content=jsonable_encoder(result))
