import time
from typing import Any, Dict

from app.core.config import SERVICE_NAME, SERVICE_VERSION


def build_envelope(
    event_id: str,
    event_type: str,
    payload: Dict[str, Any],
    source: str = SERVICE_NAME,
    version: str = SERVICE_VERSION,
) -> Dict[str, Any]:
    """Wraps a business payload in the wire envelope stored on the outbox row and sent as-is."""
    return {
        "eventId": event_id,
        "eventType": event_type,
        "timestamp": int(time.time() * 1000),
        "version": version,
        "source": source,
        "payload": payload,
    }
