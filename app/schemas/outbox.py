from pydantic import BaseModel
from typing import Any, Dict, Optional
import uuid

from app.models.outbox import OutboxStatus


class OutboxEntryResponse(BaseModel):
    """Admin view of one outbox row."""
    event_id: uuid.UUID
    aggregate_id: str
    event_type: str
    status: OutboxStatus
    retry_count: int
    last_error: Optional[str] = None
    created_at: str
    published_at: Optional[str] = None
    envelope: Dict[str, Any]
