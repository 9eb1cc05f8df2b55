from fastapi import APIRouter, Depends, Query
from uuid import UUID

from app.api.deps import get_services
from app.core.wiring import Services
from app.models.outbox import OutboxEntry
from app.schemas.outbox import OutboxEntryResponse
from app.schemas.response import SuccessResponse

router = APIRouter()


def _to_response(entry: OutboxEntry) -> dict:
    return OutboxEntryResponse(
        event_id=entry.event_id,
        aggregate_id=entry.aggregate_id,
        event_type=entry.event_type,
        status=entry.status,
        retry_count=entry.retry_count,
        last_error=entry.last_error,
        created_at=str(entry.created_at),
        published_at=str(entry.published_at) if entry.published_at else None,
        envelope=entry.payload,
    ).model_dump(mode="json")


@router.get("/failed", response_model=SuccessResponse)
async def list_failed_events(limit: int = Query(100, ge=1, le=1000), services: Services = Depends(get_services)):
    """Outbox entries that exhausted their delivery attempts."""
    entries = await services.outbox.list_failed(limit=limit)
    return SuccessResponse(data=[_to_response(e) for e in entries])


@router.post("/{event_id}/retry", response_model=SuccessResponse)
async def retry_failed_event(event_id: UUID, services: Services = Depends(get_services)):
    """Puts a failed entry back to pending and schedules a new delivery job."""
    await services.outbox.requeue_failed(str(event_id))
    return SuccessResponse(data={"event_id": str(event_id), "status": "pending"})
