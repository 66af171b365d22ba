"""Append-only audit trail writer."""
from typing import Any, Dict, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from campforms.models.audit import Event


def record_event(
    db: Session,
    stream_id: str,
    event_type: str,
    event_data: Dict[str, Any],
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None
) -> Event:
    """
    Add one audit event to the caller's transaction.

    Does not commit: the event must land atomically with the change it
    describes, so committing is the caller's job.
    """
    current = db.query(func.max(Event.version)).filter(Event.stream_id == stream_id).scalar()
    event = Event(
        organization_id=organization_id,
        stream_id=stream_id,
        event_type=event_type,
        event_data=event_data,
        version=(current or 0) + 1,
        user_id=user_id
    )
    db.add(event)
    db.flush()
    return event
