"""
Form definition store.

All structural changes to a form go through here: creation, edits that
reconcile the field list, publishing and archiving. Each public method is one
transaction and writes exactly one audit event.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy.orm import Session, selectinload
from campforms.database import atomic
from campforms.models.audit import EventType, form_stream
from campforms.models.domain import FormDefinition, FormField, FormOption
from campforms.models.enums import FormStatus
from campforms.api.schemas import FieldInput, FormMetadata, FormScope, OptionInput
from campforms.services.audit import record_event
from campforms.services.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from campforms.services.field_types import is_known_field_type, supports_options
from campforms.services.snapshots import SnapshotManager

logger = logging.getLogger(__name__)


def check_field_structure(fields: List[FieldInput]) -> None:
    """
    Reject a field list that cannot be stored consistently.

    - field keys must be unique (ConflictError)
    - show_if and triggers_fields must name other fields of the same form
    - option parent references must resolve and must not loop
    """
    keys = [field.field_key for field in fields]
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        raise ConflictError(f"Duplicate field keys: {', '.join(duplicates)}")

    known = set(keys)
    violations: List[Tuple[str, str]] = []
    for field in fields:
        if field.conditional_logic:
            for condition in field.conditional_logic.show_if:
                if condition.field_key == field.field_key:
                    violations.append((field.field_key, "A field cannot depend on itself"))
                elif condition.field_key not in known:
                    violations.append(
                        (field.field_key, f"Condition refers to unknown field '{condition.field_key}'")
                    )
        for option in field.options:
            if option.triggers_fields:
                for key in option.triggers_fields.field_keys:
                    if key not in known:
                        violations.append(
                            (field.field_key, f"Option '{option.value}' triggers unknown field '{key}'")
                        )
        violations.extend((field.field_key, message) for message in _option_tree_problems(field.options))

    if violations:
        raise ValidationFailedError(violations, message="Form structure is invalid")


def _option_tree_problems(options: List[OptionInput]) -> List[str]:
    refs = [option.ref for option in options if option.ref is not None]
    problems = []
    if len(refs) != len(set(refs)):
        problems.append("Option refs must be unique within a field")
        return problems

    parents: Dict[str, Optional[str]] = {option.ref: option.parent_ref for option in options if option.ref}
    for option in options:
        if option.parent_ref is None:
            continue
        if option.parent_ref not in parents:
            problems.append(f"Option '{option.value}' has unknown parent '{option.parent_ref}'")
            continue
        # Walk up from the parent; meeting ourselves again means a cycle
        seen = {option.ref}
        current = option.parent_ref
        while current is not None:
            if current in seen:
                problems.append(f"Option '{option.value}' cannot be its own ancestor")
                break
            seen.add(current)
            current = parents.get(current)
    return problems


class FormStore:
    """CRUD for form definitions, their fields and options."""

    def __init__(self, db: Session):
        self.db = db
        self.snapshots = SnapshotManager(db)

    # Reads
    def get_form(self, form_id: int) -> FormDefinition:
        form = self.db.query(FormDefinition).filter(FormDefinition.id == form_id).first()
        if not form:
            raise NotFoundError("Form", form_id)
        return form

    def get_form_complete(self, form_id: int) -> FormDefinition:
        """Form with fields and options loaded, both in display order."""
        form = self.db.query(FormDefinition).options(
            selectinload(FormDefinition.fields).selectinload(FormField.options)
        ).filter(FormDefinition.id == form_id).first()
        if not form:
            raise NotFoundError("Form", form_id)
        return form

    def list_forms(
        self,
        camp_id: str,
        session_id: Optional[str] = None,
        status: Optional[FormStatus] = None
    ) -> List[FormDefinition]:
        query = self.db.query(FormDefinition).filter(FormDefinition.camp_id == camp_id)
        if session_id is not None:
            query = query.filter(FormDefinition.session_id == session_id)
        if status is not None:
            query = query.filter(FormDefinition.status == status)
        return query.order_by(FormDefinition.created_at.desc(), FormDefinition.id.desc()).all()

    # Writes
    def create(self, scope: FormScope, metadata: FormMetadata, created_by: str) -> FormDefinition:
        """Create an empty draft form at version 1."""
        with atomic(self.db):
            form = self.new_form(scope, metadata, created_by)
            record_event(
                self.db,
                form_stream(form.id),
                EventType.FORM_CREATED,
                {"form_id": form.id, "name": form.name, "form_type": form.form_type.value},
                user_id=created_by,
                organization_id=form.organization_id
            )

        self.db.refresh(form)
        logger.info(f"Form {form.id} created by {created_by}")
        return form

    def update_definition(
        self,
        form_id: int,
        metadata: FormMetadata,
        fields: List[FieldInput],
        user_id: str,
        expected_version: Optional[int] = None
    ) -> FormDefinition:
        """
        Replace the form's metadata and reconcile its field list.

        Invariants:
        - An input field with an id keeps that field's key, or ConflictError
        - An existing field never changes type in place, or ConflictError
        - Fields missing from the input are deleted with their options
        - Options of every kept or new field are fully replaced
        - version goes up by exactly one, via compare-and-swap
        - A published form gets a snapshot of the new version
        """
        form = self.get_form(form_id)
        read_version = form.version
        if expected_version is not None and expected_version != read_version:
            logger.warning(f"Stale edit of form {form_id}: expected v{expected_version}, found v{read_version}")
            raise ConflictError(
                f"Form {form_id} is at version {read_version}, not {expected_version}. Reload and retry."
            )

        check_field_structure(fields)

        with atomic(self.db):
            stored_by_id = {field.id: field for field in form.fields}
            stored_by_key = {field.field_key: field for field in form.fields}
            matched: Dict[int, FieldInput] = {}
            new_inputs: List[FieldInput] = []

            for field_input in fields:
                if field_input.id is not None:
                    stored = stored_by_id.get(field_input.id)
                    if stored is None:
                        raise NotFoundError("Field", field_input.id)
                    if stored.field_key != field_input.field_key:
                        raise ConflictError(
                            f"Field {stored.id} has key '{stored.field_key}'; keys cannot be renamed. "
                            f"Add a new field for '{field_input.field_key}' instead."
                        )
                else:
                    stored = stored_by_key.get(field_input.field_key)

                if stored is None:
                    new_inputs.append(field_input)
                    continue
                if stored.field_type != field_input.field_type:
                    raise ConflictError(
                        f"Field '{stored.field_key}' is a {stored.field_type} field; "
                        f"changing it to {field_input.field_type} needs a new field key"
                    )
                matched[stored.id] = field_input

            removed = [field for field in form.fields if field.id not in matched]
            for field in removed:
                form.fields.remove(field)

            for field in list(form.fields):
                self._apply_field(field, matched[field.id])
            for field_input in new_inputs:
                self.add_field(form, field_input)

            form.name = metadata.name
            form.description = metadata.description
            form.form_type = metadata.form_type
            self.db.flush()

            self._bump_version(form, read_version)

            if form.is_published:
                self.snapshots.ensure_snapshot(form)

            record_event(
                self.db,
                form_stream(form.id),
                EventType.FORM_UPDATED,
                {
                    "form_id": form.id,
                    "version": form.version,
                    "added": [field.field_key for field in new_inputs],
                    "removed": [field.field_key for field in removed],
                    "updated": [field_input.field_key for field_input in matched.values()],
                },
                user_id=user_id,
                organization_id=form.organization_id
            )

        self.db.refresh(form)
        logger.info(f"Form {form.id} updated to v{form.version} by {user_id}")
        return form

    def publish(self, form_id: int, user_id: str) -> FormDefinition:
        """
        Make the form available and snapshot its current version.

        Publishing twice never creates a second snapshot for the same version.
        """
        form = self.get_form(form_id)
        if form.status == FormStatus.ARCHIVED:
            raise InvalidStateError(
                f"Form {form_id} is archived and cannot be published",
                current_state=form.status.value
            )

        with atomic(self.db):
            form.is_published = True
            form.published_at = datetime.utcnow()
            form.status = FormStatus.ACTIVE
            self.snapshots.ensure_snapshot(form)
            record_event(
                self.db,
                form_stream(form.id),
                EventType.FORM_PUBLISHED,
                {"form_id": form.id, "version": form.version},
                user_id=user_id,
                organization_id=form.organization_id
            )

        self.db.refresh(form)
        logger.info(f"Form {form.id} published at v{form.version} by {user_id}")
        return form

    def archive(self, form_id: int, user_id: str) -> FormDefinition:
        """Archive the form. Fields, options and snapshots are kept."""
        form = self.get_form(form_id)

        with atomic(self.db):
            form.status = FormStatus.ARCHIVED
            record_event(
                self.db,
                form_stream(form.id),
                EventType.FORM_ARCHIVED,
                {"form_id": form.id, "version": form.version},
                user_id=user_id,
                organization_id=form.organization_id
            )

        self.db.refresh(form)
        logger.info(f"Form {form.id} archived by {user_id}")
        return form

    # Building blocks shared with the AI workflow; these never commit
    def new_form(
        self,
        scope: FormScope,
        metadata: FormMetadata,
        created_by: str,
        ai_action_id: Optional[int] = None
    ) -> FormDefinition:
        form = FormDefinition(
            organization_id=scope.organization_id,
            camp_id=scope.camp_id,
            session_id=scope.session_id,
            created_by=created_by,
            name=metadata.name,
            description=metadata.description,
            form_type=metadata.form_type,
            status=FormStatus.DRAFT,
            is_published=False,
            version=1,
            ai_action_id=ai_action_id
        )
        self.db.add(form)
        self.db.flush()
        return form

    def add_field(self, form: FormDefinition, field_input: FieldInput) -> FormField:
        if not is_known_field_type(field_input.field_type):
            logger.warning(f"Field '{field_input.field_key}' has unknown type '{field_input.field_type}'; validating as free text")
        field = FormField(field_key=field_input.field_key, field_type=field_input.field_type)
        form.fields.append(field)
        self._apply_field(field, field_input)
        return field

    def _apply_field(self, field: FormField, field_input: FieldInput) -> None:
        field.label = field_input.label
        field.description = field_input.description
        field.validation_rules = (
            field_input.validation_rules.model_dump(exclude_none=True)
            if field_input.validation_rules else None
        )
        field.conditional_logic = (
            field_input.conditional_logic.model_dump(mode="json")
            if field_input.conditional_logic else None
        )
        field.display_order = field_input.display_order
        field.section_name = field_input.section_name
        self._replace_options(field, field_input.options)

    def _replace_options(self, field: FormField, options: List[OptionInput]) -> None:
        """Delete every option of the field and insert the given ones."""
        if field.options:
            field.options.clear()
            self.db.flush()

        if not supports_options(field.field_type):
            return

        by_ref: Dict[str, FormOption] = {}
        created = []
        for option_input in options:
            option = FormOption(
                label=option_input.label,
                value=option_input.value,
                display_order=option_input.display_order,
                triggers_fields=(
                    option_input.triggers_fields.model_dump()
                    if option_input.triggers_fields else None
                )
            )
            field.options.append(option)
            created.append((option, option_input))
            if option_input.ref is not None:
                by_ref[option_input.ref] = option

        for option, option_input in created:
            if option_input.parent_ref is not None:
                option.parent_option = by_ref[option_input.parent_ref]

    def _bump_version(self, form: FormDefinition, read_version: int) -> None:
        """Compare-and-swap the version from read_version to read_version + 1."""
        rows = self.db.query(FormDefinition).filter(
            FormDefinition.id == form.id,
            FormDefinition.version == read_version
        ).update(
            {
                FormDefinition.version: FormDefinition.version + 1,
                FormDefinition.updated_at: datetime.utcnow(),
            },
            synchronize_session=False
        )
        if rows != 1:
            logger.warning(f"Lost update race on form {form.id} at v{read_version}")
            raise ConflictError(
                f"Form {form.id} was changed by someone else since version {read_version}. Reload and retry."
            )
        self.db.expire(form, ["version", "updated_at"])
