"""Domain models - form definitions, their fields and options, snapshots, submissions and AI actions."""
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Enum as SQLEnum,
    JSON,
    Text,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, backref
from campforms.database import Base
from campforms.models.enums import FormType, FormStatus, SubmissionStatus, AIActionStatus


class FormDefinition(Base):
    """
    One logical form, owned by a camp (and optionally a single session).

    Invariants:
    - version starts at 1 and only ever increases
    - archiving is a status change; fields, options and snapshots are kept
    """
    __tablename__ = "form_definitions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=True, index=True)
    camp_id = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=True, index=True)
    created_by = Column(String, nullable=False)

    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    form_type = Column(SQLEnum(FormType), nullable=False)
    status = Column(SQLEnum(FormStatus), nullable=False, default=FormStatus.DRAFT)
    is_published = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    ai_action_id = Column(Integer, ForeignKey("ai_actions.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    fields = relationship(
        "FormField",
        back_populates="form_definition",
        cascade="all, delete-orphan",
        order_by="[FormField.display_order, FormField.id]"
    )
    snapshots = relationship(
        "FormSnapshot",
        back_populates="form_definition",
        cascade="all, delete-orphan",
        order_by="FormSnapshot.version"
    )
    submissions = relationship("FormSubmission", back_populates="form_definition")
    ai_action = relationship("AIAction", back_populates="forms")

    __table_args__ = (
        Index("ix_form_definitions_camp_session_status", "camp_id", "session_id", "status"),
    )


class FormField(Base):
    """
    A single question on a form.

    Invariants:
    - field_key is unique within the form and never renamed in place
    - fields sort by (display_order, id), which is total even when orders tie
    """
    __tablename__ = "form_fields"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    form_definition_id = Column(Integer, ForeignKey("form_definitions.id"), nullable=False)
    field_key = Column(String, nullable=False)
    label = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    # Stored as plain text so forward-compatible types from AI proposals survive
    field_type = Column(String, nullable=False)
    validation_rules = Column(JSON, nullable=True)
    conditional_logic = Column(JSON, nullable=True)
    display_order = Column(Integer, nullable=False)
    section_name = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    form_definition = relationship("FormDefinition", back_populates="fields")
    options = relationship(
        "FormOption",
        back_populates="form_field",
        cascade="all, delete-orphan",
        order_by="[FormOption.display_order, FormOption.id]"
    )

    __table_args__ = (
        UniqueConstraint("form_definition_id", "field_key", name="uq_form_fields_form_key"),
        Index("ix_form_fields_form_order", "form_definition_id", "display_order"),
    )


class FormOption(Base):
    """
    A choice for an option-bearing field.

    Invariants:
    - replaced wholesale whenever its field is edited, never patched
    - parent_option_id never points at the option itself or a descendant
    """
    __tablename__ = "form_options"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    form_field_id = Column(Integer, ForeignKey("form_fields.id"), nullable=False)
    parent_option_id = Column(Integer, ForeignKey("form_options.id", ondelete="CASCADE"), nullable=True)
    label = Column(String, nullable=False)
    value = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False)
    triggers_fields = Column(JSON, nullable=True)  # {"field_keys": [...]}

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    form_field = relationship("FormField", back_populates="options")
    child_options = relationship(
        "FormOption",
        backref=backref("parent_option", remote_side=[id]),
        order_by="FormOption.display_order"
    )

    __table_args__ = (
        Index("ix_form_options_field_order", "form_field_id", "display_order"),
    )


class FormSnapshot(Base):
    """
    Frozen structure of a form at one version.

    Invariants:
    - exactly one row per (form_definition_id, version)
    - never updated once written
    """
    __tablename__ = "form_snapshots"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    form_definition_id = Column(Integer, ForeignKey("form_definitions.id"), nullable=False)
    version = Column(Integer, nullable=False)
    snapshot = Column(JSON, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    form_definition = relationship("FormDefinition", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint("form_definition_id", "version", name="uq_form_snapshots_form_version"),
    )


class FormSubmission(Base):
    """
    One user's answers to a published form.

    Invariant: form_version names the snapshot the payload was validated against.
    """
    __tablename__ = "form_submissions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    form_definition_id = Column(Integer, ForeignKey("form_definitions.id"), nullable=False, index=True)
    form_version = Column(Integer, nullable=False)

    user_id = Column(String, nullable=True, index=True)
    child_id = Column(String, nullable=True, index=True)
    registration_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True)

    status = Column(SQLEnum(SubmissionStatus), nullable=False, default=SubmissionStatus.SUBMITTED)
    submission_data = Column(JSON, nullable=False)

    submitted_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    form_definition = relationship("FormDefinition", back_populates="submissions")


class AIAction(Base):
    """
    A structural change proposed by the AI assistant, waiting for a human.

    Invariants:
    - only an approved action can be executed, and only once
    - executed_at is set exactly when status becomes executed
    """
    __tablename__ = "ai_actions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    organization_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    params = Column(JSON, nullable=False)
    preview = Column(JSON, nullable=False)
    status = Column(SQLEnum(AIActionStatus), nullable=False, default=AIActionStatus.PENDING, index=True)

    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    forms = relationship("FormDefinition", back_populates="ai_action")
