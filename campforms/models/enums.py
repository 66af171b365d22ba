"""Enums for the forms engine - the closed sets of values stored on rows."""
from enum import Enum


class FormType(str, Enum):
    """What a form is used for."""
    REGISTRATION = "registration"
    WAIVER = "waiver"
    MEDICAL = "medical"
    CUSTOM = "custom"


class FormStatus(str, Enum):
    """Lifecycle of a form definition."""
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class FieldType(str, Enum):
    """Field types the builder knows how to render and validate."""
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    MULTISELECT = "multiselect"
    BOOLEAN = "boolean"


class ConditionOperator(str, Enum):
    """Operators allowed in a field's show_if triggers."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"


class SubmissionStatus(str, Enum):
    """Review state of a submission."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"


class AIActionStatus(str, Enum):
    """
    AI action lifecycle.

    pending -> approved -> executed, or pending -> rejected. Executed and
    rejected are terminal.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"


class AIActionKind(str, Enum):
    """Kinds of AI actions this engine can materialise."""
    CREATE_FORM = "createForm"
