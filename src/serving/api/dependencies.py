"""
Request dependencies.

Services are built once in the application lifespan and stored on
`app.state`; routes receive them through these getters so tests can swap
them with `app.dependency_overrides`.
"""

from typing import Optional

from fastapi import Header, Request

from src.analytics.aggregator import MetricsAggregator
from src.bulk.executor import BulkExecutor
from src.config.logging import bind_actor
from src.domain.errors import ValidationError
from src.gateway.fallback import RecordStoreGateway


def get_gateway(request: Request) -> RecordStoreGateway:
    return request.app.state.gateway


def get_aggregator(request: Request) -> MetricsAggregator:
    return request.app.state.aggregator


def get_executor(request: Request) -> BulkExecutor:
    return request.app.state.executor


async def get_actor(x_admin_id: Optional[str] = Header(default=None)) -> str:
    """Acting admin id from the X-Admin-Id header"""
    if x_admin_id is None or not x_admin_id.strip():
        raise ValidationError("X-Admin-Id header is required for write operations")
    actor = x_admin_id.strip()
    bind_actor(actor)
    return actor
