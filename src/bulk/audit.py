"""
Audit sink - append-only log of administrative actions.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database.models import AuditLog
from src.domain.models import AuditLogEntry

logger = structlog.get_logger(__name__)


class AuditSink(ABC):
    """Abstract base class for audit destinations"""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        """
        Persist one entry.

        Raises:
            Any storage error; the executor reports it, it never retries.
        """
        pass

    @abstractmethod
    async def list_entries(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Most recent entries first"""
        pass


class SqlAuditSink(AuditSink):
    """Audit entries in the `audit_logs` table of the primary store"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(self, entry: AuditLogEntry) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(AuditLog.from_entry(entry))
        logger.debug(
            "Audit entry written",
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            outcome=entry.outcome.value,
        )

    async def list_entries(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        stmt = select(AuditLog)
        if resource_type is not None:
            stmt = stmt.where(AuditLog.resource_type == resource_type)
        if resource_id is not None:
            stmt = stmt.where(AuditLog.resource_id == resource_id)
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)

        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row.to_entry() for row in rows]
