"""
Errors raised by the forms engine.

These are refusals, not crashes: each one means the engine declined to make a
change and left the database untouched. Callers decide how to word them.
"""
from typing import List, Optional, Tuple


class FormEngineError(Exception):
    """Base class for every refusal raised by the engine."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class NotFoundError(FormEngineError):
    """A form, field, snapshot or AI action id does not exist."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ValidationFailedError(FormEngineError):
    """
    One or more fields violate their rules.

    Carries every violation as a (field_key, message) pair so the caller can
    report all of them at once.
    """

    def __init__(self, violations: List[Tuple[str, str]], message: Optional[str] = None):
        self.violations = list(violations)
        keys = ", ".join(key for key, _ in self.violations)
        super().__init__(message or f"Validation failed for: {keys}")

    @property
    def field_keys(self) -> List[str]:
        return [key for key, _ in self.violations]


class SnapshotMissingError(FormEngineError):
    """
    No snapshot exists for the requested form version.

    Means the form was never published, which is an admin problem rather
    than something the submitter can fix.
    """

    def __init__(self, form_id: int, version: int):
        self.form_id = form_id
        self.version = version
        super().__init__(
            f"Form {form_id} has no published snapshot for version {version}. "
            "Publish the form before accepting submissions."
        )


class ConflictError(FormEngineError):
    """An identity-breaking change or a stale version on update."""


class InvalidStateError(FormEngineError):
    """A lifecycle transition was attempted from the wrong state."""

    def __init__(self, message: str, current_state: Optional[str] = None):
        self.current_state = current_state
        super().__init__(message)
