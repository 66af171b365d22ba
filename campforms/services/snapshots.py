"""
Versioning & snapshot manager.

A snapshot is the fully expanded structure of a form (fields and options)
frozen at one version. Submissions are validated against snapshots, never
against the live definition, so an edit in progress cannot break them.
"""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from campforms.models.domain import FormDefinition, FormField, FormOption, FormSnapshot
from campforms.services.exceptions import SnapshotMissingError

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SnapshotManager:
    """Creates and reads immutable per-version form snapshots."""

    def __init__(self, db: Session):
        self.db = db

    def build_structure(self, form: FormDefinition) -> Dict[str, Any]:
        """Denormalise the live form into plain JSON-ready data."""
        # Pending field/option edits must be visible to the queries below
        self.db.flush()

        fields = self.db.query(FormField).filter(
            FormField.form_definition_id == form.id
        ).order_by(FormField.display_order, FormField.id).all()

        return {
            "form_definition_id": form.id,
            "version": form.version,
            "name": form.name,
            "description": form.description,
            "form_type": form.form_type.value,
            "fields": [self._field_structure(field) for field in fields],
        }

    def _field_structure(self, field: FormField) -> Dict[str, Any]:
        options = self.db.query(FormOption).filter(
            FormOption.form_field_id == field.id
        ).order_by(FormOption.display_order, FormOption.id).all()

        return {
            "id": field.id,
            "field_key": field.field_key,
            "label": field.label,
            "description": field.description,
            "field_type": field.field_type,
            "validation_rules": field.validation_rules or {},
            "conditional_logic": field.conditional_logic,
            "display_order": field.display_order,
            "section_name": field.section_name,
            "options": [
                {
                    "id": option.id,
                    "parent_option_id": option.parent_option_id,
                    "label": option.label,
                    "value": option.value,
                    "display_order": option.display_order,
                    "triggers_fields": option.triggers_fields,
                }
                for option in options
            ],
        }

    def ensure_snapshot(self, form: FormDefinition) -> FormSnapshot:
        """
        Snapshot the form at its current version unless one already exists.

        Exactly one row exists per (form, version). A second call, or a
        concurrent writer that got there first, leaves the stored snapshot
        untouched and returns it.
        """
        existing = self.find_snapshot(form.id, form.version)
        if existing is not None:
            return existing

        values = {
            "form_definition_id": form.id,
            "version": form.version,
            "snapshot": self.build_structure(form),
        }
        insert = _INSERT_BY_DIALECT.get(self.db.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(FormSnapshot).values(**values).on_conflict_do_nothing(
                index_elements=["form_definition_id", "version"]
            )
            self.db.execute(stmt)
        else:
            try:
                with self.db.begin_nested():
                    self.db.add(FormSnapshot(**values))
            except IntegrityError:
                logger.info(f"Snapshot for form {form.id} v{form.version} already written concurrently")

        snapshot = self.find_snapshot(form.id, form.version)
        logger.info(f"Snapshot ready for form {form.id} v{form.version}")
        return snapshot

    def find_snapshot(self, form_id: int, version: int) -> Optional[FormSnapshot]:
        return self.db.query(FormSnapshot).filter(
            FormSnapshot.form_definition_id == form_id,
            FormSnapshot.version == version
        ).first()

    def get_snapshot(self, form_id: int, version: int) -> FormSnapshot:
        """Snapshot for (form, version), or SnapshotMissingError."""
        snapshot = self.find_snapshot(form_id, version)
        if snapshot is None:
            raise SnapshotMissingError(form_id, version)
        return snapshot

    def list_snapshots(self, form_id: int) -> List[FormSnapshot]:
        return self.db.query(FormSnapshot).filter(
            FormSnapshot.form_definition_id == form_id
        ).order_by(FormSnapshot.version).all()
