"""
System Events API
Exposes the system_events table: scans, sweeps and other automated actions.
"""
import logging
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db, AsyncSessionLocal
from app.middleware.rbac import require_operator_or_above
from app.models.system_event import SystemEvent

router = APIRouter(prefix="/api/system-events", tags=["system-events"])
logger = logging.getLogger(__name__)


class SystemEventResponse(BaseModel):
    id: int
    timestamp: datetime
    level: str
    source: str
    event_type: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    message: str
    details: Optional[str] = None

    model_config = {"from_attributes": True}


@router.get("/", response_model=list[SystemEventResponse])
async def list_system_events(
    limit: int = Query(200, le=1000),
    offset: int = 0,
    level: Optional[str] = None,
    source: Optional[str] = None,
    event_type: Optional[str] = None,
    resource_id: Optional[str] = Query(None, description="e.g. the CIDR of a scan"),
    since: Optional[datetime] = None,
    _=Depends(require_operator_or_above()),
    db: AsyncSession = Depends(get_db),
):
    filters = [
        (SystemEvent.level, level),
        (SystemEvent.source, source),
        (SystemEvent.event_type, event_type),
        (SystemEvent.resource_id, resource_id),
    ]
    q = select(SystemEvent).where(*[col == value for col, value in filters if value])
    if since:
        q = q.where(SystemEvent.timestamp >= since)
    q = q.order_by(desc(SystemEvent.timestamp), desc(SystemEvent.id)).offset(offset).limit(limit)
    result = await db.execute(q)
    return result.scalars().all()


# ── helper used by background services (no existing DB session) ───────────────

async def log_system_event(
    level: str,
    source: str,
    event_type: str,
    message: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
    session_factory: Optional[async_sessionmaker] = None,
) -> None:
    """
    Write a SystemEvent record in its own session, for background tasks and
    scheduled jobs that have no request context.
    """
    try:
        async with (session_factory or AsyncSessionLocal)() as db:
            db.add(SystemEvent(
                level=level,
                source=source,
                event_type=event_type,
                resource_type=resource_type,
                resource_id=resource_id,
                message=message[:500],
                details=details,
            ))
            await db.commit()
    except Exception as exc:
        # Never let event logging failure crash the caller
        logger.error("Failed to write system event: %s", exc)
