"""Submission processor: validate answers against a frozen form version and store them."""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from campforms.database import atomic
from campforms.models.audit import EventType, submission_stream
from campforms.models.domain import FormDefinition, FormSubmission
from campforms.models.enums import FormStatus, SubmissionStatus
from campforms.services.audit import record_event
from campforms.services.exceptions import InvalidStateError, NotFoundError, ValidationFailedError
from campforms.services.snapshots import SnapshotManager
from campforms.services.validation import FieldSpec, build_submission_validator

logger = logging.getLogger(__name__)


class SubmissionProcessor:
    """Accepts submissions for published forms."""

    def __init__(self, db: Session):
        self.db = db
        self.snapshots = SnapshotManager(db)

    def submit_form(
        self,
        form_id: int,
        payload: Dict[str, Any],
        user_id: Optional[str] = None,
        child_id: Optional[str] = None,
        registration_id: Optional[str] = None,
        session_id: Optional[str] = None,
        form_version: Optional[int] = None
    ) -> FormSubmission:
        """
        Validate and store one submission.

        The payload is checked against the snapshot of form_version, or of the
        form's current version when none is given, never against the live
        fields. Nothing is stored when validation fails.
        """
        form = self.db.query(FormDefinition).filter(FormDefinition.id == form_id).first()
        if not form:
            raise NotFoundError("Form", form_id)
        if form.status == FormStatus.ARCHIVED:
            raise InvalidStateError(
                f"Form {form_id} is archived and no longer accepts submissions",
                current_state=form.status.value
            )

        version = form_version if form_version is not None else form.version
        snapshot = self.snapshots.get_snapshot(form.id, version)

        validator = build_submission_validator(
            FieldSpec.from_snapshot(field) for field in snapshot.snapshot.get("fields", [])
        )
        violations = validator.validate(payload)
        if violations:
            logger.info(f"Submission to form {form.id} v{version} rejected: {[key for key, _ in violations]}")
            raise ValidationFailedError(violations)

        with atomic(self.db):
            submission = FormSubmission(
                form_definition_id=form.id,
                form_version=version,
                user_id=user_id,
                child_id=child_id,
                registration_id=registration_id,
                session_id=session_id,
                status=SubmissionStatus.SUBMITTED,
                submission_data=dict(payload)
            )
            self.db.add(submission)
            self.db.flush()

            record_event(
                self.db,
                submission_stream(submission.id),
                EventType.FORM_SUBMITTED,
                {
                    "submission_id": submission.id,
                    "form_id": form.id,
                    "form_version": version,
                    "child_id": child_id,
                    "registration_id": registration_id,
                },
                user_id=user_id,
                organization_id=form.organization_id
            )

        self.db.refresh(submission)
        logger.info(f"Submission {submission.id} stored for form {form.id} v{version}")
        return submission

    def submissions_by_form(self, form_id: int) -> List[FormSubmission]:
        """All submissions for a form, newest first."""
        return self.db.query(FormSubmission).filter(
            FormSubmission.form_definition_id == form_id
        ).order_by(FormSubmission.submitted_at.desc(), FormSubmission.id.desc()).all()

    def submissions_by_user(self, user_id: str) -> List[FormSubmission]:
        return self.db.query(FormSubmission).filter(
            FormSubmission.user_id == user_id
        ).order_by(FormSubmission.submitted_at.desc(), FormSubmission.id.desc()).all()
