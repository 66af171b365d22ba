"""
Audit log model - append-only record of state transitions.

This is a plain audit trail written beside ordinary writes. Nothing
rebuilds state by replaying it.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, Index
from campforms.database import Base


class Event(Base):
    """
    Immutable audit event.

    Invariants:
    - Once written, never edited or deleted
    - version is the 1-based position of the event within its stream
    - Written in the same transaction as the change it describes
    """
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=True, index=True)
    stream_id = Column(String, nullable=False)  # e.g., "form-12", "submission-4"
    event_type = Column(String, nullable=False, index=True)
    event_data = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False)
    user_id = Column(String, nullable=True)  # Nullable for system events
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("ix_events_stream_version", "stream_id", "version"),
    )


class EventType:
    """Event type names written to the audit log."""
    # Form lifecycle
    FORM_CREATED = "FormCreated"
    FORM_UPDATED = "FormUpdated"
    FORM_PUBLISHED = "FormPublished"
    FORM_ARCHIVED = "FormArchived"

    # Submissions
    FORM_SUBMITTED = "FormSubmitted"

    # AI workflow
    AI_FORM_GENERATION_REQUESTED = "AIFormGenerationRequested"
    AI_ACTION_APPROVED = "AIActionApproved"
    AI_ACTION_REJECTED = "AIActionRejected"
    FORM_CREATED_BY_AI = "FormCreatedByAI"
    AI_ACTION_EXECUTED = "AIActionExecuted"


def form_stream(form_id: int) -> str:
    return f"form-{form_id}"


def submission_stream(submission_id: int) -> str:
    return f"submission-{submission_id}"


def ai_action_stream(action_id: int) -> str:
    return f"ai-action-{action_id}"
