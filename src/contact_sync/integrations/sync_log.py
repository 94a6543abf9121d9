"""Append-only sync audit log.

Written by the orchestrator and triggers, read only by the log listing
endpoint. Entries are never updated or deleted.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import AsyncGenerator, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.contact_sync.integrations.models import SyncLogModel
from src.contact_sync.integrations.schemas import (
    Pagination,
    SyncLogCreate,
    SyncLogPage,
    SyncLogRead,
    SyncProvider,
)


def _model_to_log(model: SyncLogModel) -> SyncLogRead:
    return SyncLogRead(
        id=str(model.id),
        provider=model.provider,
        direction=model.direction,
        status=model.status,
        contact_id=str(model.contact_id) if model.contact_id else None,
        external_id=model.external_id,
        message=model.message,
        error_details=model.error_details,
        records_processed=model.records_processed or 0,
        created_at=model.created_at,
    )


class SyncLogService:
    """Writes and pages through SyncLog entries.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_log(self, data: SyncLogCreate) -> SyncLogRead:
        async for session in self._session_factory():
            model = SyncLogModel(
                provider=data.provider,
                direction=data.direction,
                status=data.status,
                contact_id=uuid.UUID(data.contact_id) if data.contact_id else None,
                external_id=data.external_id,
                message=data.message,
                error_details=data.error_details,
                records_processed=data.records_processed,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_log(model)

    async def list_logs(
        self,
        page: int = 1,
        limit: int = 50,
        provider: SyncProvider | None = None,
    ) -> SyncLogPage:
        """Page through logs, newest first.

        Args:
            page: 1-based page number.
            limit: Page size.
            provider: Restrict to one provider.

        Returns:
            SyncLogPage with the entries and pagination metadata.
        """
        async for session in self._session_factory():
            stmt = select(SyncLogModel)
            count_stmt = select(func.count()).select_from(SyncLogModel)
            if provider is not None:
                stmt = stmt.where(SyncLogModel.provider == provider)
                count_stmt = count_stmt.where(SyncLogModel.provider == provider)

            stmt = (
                stmt.order_by(SyncLogModel.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            result = await session.execute(stmt)
            total = (await session.execute(count_stmt)).scalar_one()

            return SyncLogPage(
                logs=[_model_to_log(m) for m in result.scalars().all()],
                pagination=Pagination(
                    page=page,
                    limit=limit,
                    total=total,
                    total_pages=math.ceil(total / limit) if limit else 0,
                ),
            )
