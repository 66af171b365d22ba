"""
AI form generation approval workflow.

The assistant never writes forms directly. It proposes one, a human approves
or rejects the proposal, and only an approved proposal is executed into a
draft form.

    pending -> approved -> executed
    pending -> rejected
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from campforms.database import atomic
from campforms.models.audit import EventType, ai_action_stream, form_stream
from campforms.models.domain import AIAction, FormDefinition
from campforms.models.enums import AIActionKind, AIActionStatus
from campforms.api.schemas import AIFormGeneration, FormScope
from campforms.services.audit import record_event
from campforms.services.exceptions import InvalidStateError, NotFoundError
from campforms.services.field_types import get_field_type_label, is_reserved_field_key
from campforms.services.form_store import FormStore, check_field_structure

logger = logging.getLogger(__name__)


def sanitize_generated_form(generated: AIFormGeneration) -> AIFormGeneration:
    """
    Drop fields with reserved keys and renumber display order from 1.

    Conditions and option triggers that pointed at a dropped field are
    removed too, so the result always references fields it contains.
    """
    kept = [field for field in generated.fields if not is_reserved_field_key(field.field_key)]
    kept_keys = {field.field_key for field in kept}

    fields = []
    for index, field in enumerate(kept, start=1):
        update: Dict[str, Any] = {"display_order": index}
        if field.conditional_logic:
            show_if = [c for c in field.conditional_logic.show_if if c.field_key in kept_keys]
            update["conditional_logic"] = (
                field.conditional_logic.model_copy(update={"show_if": show_if}) if show_if else None
            )
        options = []
        for option in field.options:
            if option.triggers_fields:
                keys = [key for key in option.triggers_fields.field_keys if key in kept_keys]
                option = option.model_copy(update={
                    "triggers_fields": option.triggers_fields.model_copy(update={"field_keys": keys})
                })
            options.append(option)
        update["options"] = options
        fields.append(field.model_copy(update=update))

    return generated.model_copy(update={"fields": fields})


def build_form_preview(generated: AIFormGeneration) -> Dict[str, Any]:
    """Summary an approver sees before deciding on a proposal."""
    sections: List[str] = []
    for field in generated.fields:
        if field.section_name and field.section_name not in sections:
            sections.append(field.section_name)

    return {
        "form_name": generated.form_definition.name,
        "form_type": generated.form_definition.form_type.value,
        "field_count": len(generated.fields),
        "sections": sections,
        "fields": [
            {
                "label": field.label,
                "type": get_field_type_label(field.field_type),
                "required": bool(field.validation_rules and field.validation_rules.required),
                "conditional": field.conditional_logic is not None,
                "has_options": len(field.options) > 0,
            }
            for field in generated.fields
        ],
    }


class AIFormWorkflow:
    """Holds AI proposals until a human decides on them."""

    def __init__(self, db: Session):
        self.db = db
        self.forms = FormStore(db)

    def get_action(self, action_id: int) -> AIAction:
        action = self.db.query(AIAction).filter(AIAction.id == action_id).first()
        if not action:
            raise NotFoundError("AI action", action_id)
        return action

    def list_pending(self, organization_id: Optional[str] = None) -> List[AIAction]:
        """Pending form proposals, newest first."""
        query = self.db.query(AIAction).filter(
            AIAction.action == AIActionKind.CREATE_FORM.value,
            AIAction.status == AIActionStatus.PENDING
        )
        if organization_id is not None:
            query = query.filter(AIAction.organization_id == organization_id)
        return query.order_by(AIAction.created_at.desc(), AIAction.id.desc()).all()

    def propose(
        self,
        user_id: str,
        prompt: str,
        camp_id: str,
        generated_form: AIFormGeneration,
        session_id: Optional[str] = None,
        organization_id: Optional[str] = None
    ) -> AIAction:
        """Store a sanitised proposal as a pending action."""
        generated = sanitize_generated_form(generated_form)
        dropped = len(generated_form.fields) - len(generated.fields)
        if dropped:
            logger.warning(f"Dropped {dropped} reserved field(s) from AI proposal for camp {camp_id}")
        # Malformed proposals never reach pending
        check_field_structure(generated.fields)

        with atomic(self.db):
            action = AIAction(
                organization_id=organization_id,
                user_id=user_id,
                action=AIActionKind.CREATE_FORM.value,
                params={
                    "prompt": prompt,
                    "camp_id": camp_id,
                    "session_id": session_id,
                    "generated_form": generated.model_dump(mode="json"),
                },
                preview=build_form_preview(generated),
                status=AIActionStatus.PENDING
            )
            self.db.add(action)
            self.db.flush()

            record_event(
                self.db,
                ai_action_stream(action.id),
                EventType.AI_FORM_GENERATION_REQUESTED,
                {"ai_action_id": action.id, "camp_id": camp_id, "session_id": session_id, "prompt": prompt},
                user_id=user_id,
                organization_id=organization_id
            )

        self.db.refresh(action)
        logger.info(f"AI action {action.id} proposed by {user_id}")
        return action

    def approve(self, action_id: int, approver_id: str) -> AIAction:
        action = self._require_status(action_id, AIActionStatus.PENDING, "approved")

        with atomic(self.db):
            action.status = AIActionStatus.APPROVED
            action.approved_by = approver_id
            action.approved_at = datetime.utcnow()
            record_event(
                self.db,
                ai_action_stream(action.id),
                EventType.AI_ACTION_APPROVED,
                {"ai_action_id": action.id},
                user_id=approver_id,
                organization_id=action.organization_id
            )

        self.db.refresh(action)
        logger.info(f"AI action {action.id} approved by {approver_id}")
        return action

    def reject(self, action_id: int, approver_id: str, reason: Optional[str] = None) -> AIAction:
        action = self._require_status(action_id, AIActionStatus.PENDING, "rejected")

        with atomic(self.db):
            action.status = AIActionStatus.REJECTED
            action.approved_by = approver_id
            action.approved_at = datetime.utcnow()
            action.error = reason
            record_event(
                self.db,
                ai_action_stream(action.id),
                EventType.AI_ACTION_REJECTED,
                {"ai_action_id": action.id, "reason": reason},
                user_id=approver_id,
                organization_id=action.organization_id
            )

        self.db.refresh(action)
        logger.info(f"AI action {action.id} rejected by {approver_id}")
        return action

    def execute(self, action_id: int, approver_id: str) -> FormDefinition:
        """
        Turn an approved proposal into a draft form.

        The form, its fields and options, the status flip and both audit
        events commit together. The status flip is a compare-and-swap from
        approved, so at most one execute ever succeeds for an action.
        """
        action = self._require_status(action_id, AIActionStatus.APPROVED, "executed")
        params = action.params
        generated = AIFormGeneration.model_validate(params["generated_form"])
        check_field_structure(generated.fields)

        with atomic(self.db):
            rows = self.db.query(AIAction).filter(
                AIAction.id == action.id,
                AIAction.status == AIActionStatus.APPROVED
            ).update(
                {AIAction.status: AIActionStatus.EXECUTED, AIAction.executed_at: datetime.utcnow()},
                synchronize_session=False
            )
            if rows != 1:
                raise InvalidStateError(
                    f"AI action {action.id} was executed concurrently",
                    current_state=AIActionStatus.EXECUTED.value
                )

            scope = FormScope(
                organization_id=action.organization_id,
                camp_id=params["camp_id"],
                session_id=params.get("session_id")
            )
            form = self.forms.new_form(scope, generated.form_definition, action.user_id, ai_action_id=action.id)
            for field_input in sorted(generated.fields, key=lambda f: f.display_order):
                self.forms.add_field(form, field_input)
            self.db.flush()

            record_event(
                self.db,
                form_stream(form.id),
                EventType.FORM_CREATED_BY_AI,
                {"form_id": form.id, "ai_action_id": action.id},
                user_id=approver_id,
                organization_id=action.organization_id
            )
            record_event(
                self.db,
                ai_action_stream(action.id),
                EventType.AI_ACTION_EXECUTED,
                {"ai_action_id": action.id, "form_id": form.id},
                user_id=approver_id,
                organization_id=action.organization_id
            )

        self.db.refresh(form)
        self.db.expire(action)
        logger.info(f"AI action {action.id} executed as form {form.id} by {approver_id}")
        return form

    def _require_status(self, action_id: int, expected: AIActionStatus, target: str) -> AIAction:
        action = self.get_action(action_id)
        if action.status != expected:
            raise InvalidStateError(
                f"AI action {action_id} is {action.status.value} and cannot be {target}",
                current_state=action.status.value
            )
        return action
