"""
Tests for the AI proposal -> approval -> execution workflow.
"""
import pytest
from campforms.api.schemas import AIFormGeneration, OptionInput
from campforms.models.audit import Event, EventType, ai_action_stream, form_stream
from campforms.models.domain import FormDefinition, FormField
from campforms.models.enums import AIActionStatus, FormStatus
from campforms.services.ai_workflow import AIFormWorkflow, build_form_preview, sanitize_generated_form
from campforms.services.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationFailedError


@pytest.fixture
def generated_form():
    return AIFormGeneration.model_validate({
        "form_definition": {
            "name": "Summer Registration",
            "description": "Registration for the summer session",
            "form_type": "registration",
        },
        "fields": [
            {"field_key": "camp_id", "label": "Camp", "field_type": "text", "display_order": 1},
            {
                "field_key": "child_name",
                "label": "Child name",
                "field_type": "text",
                "validation_rules": {"required": True},
                "display_order": 2,
                "section_name": "Camper",
            },
            {
                "field_key": "has_allergies",
                "label": "Any allergies?",
                "field_type": "boolean",
                "display_order": 3,
                "section_name": "Health",
            },
            {
                "field_key": "allergies",
                "label": "Allergy details",
                "field_type": "textarea",
                "display_order": 4,
                "section_name": "Health",
                "conditional_logic": {
                    "show_if": [
                        {"field_key": "has_allergies", "operator": "equals", "value": True},
                        {"field_key": "camp_id", "operator": "isNotEmpty"},
                    ]
                },
            },
            {
                "field_key": "shirt_size",
                "label": "T-shirt size",
                "field_type": "select",
                "display_order": 5,
                "options": [
                    {"label": "Small", "value": "S", "display_order": 1},
                    {"label": "Large", "value": "L", "display_order": 2},
                ],
            },
        ],
    })


@pytest.fixture
def workflow(db_session):
    return AIFormWorkflow(db_session)


@pytest.fixture
def pending_action(workflow, generated_form):
    return workflow.propose(
        "admin_1",
        "Registration form with allergies",
        "camp_1",
        generated_form,
        session_id="session_1",
        organization_id="org_1"
    )


@pytest.fixture
def approved_action(workflow, pending_action):
    return workflow.approve(pending_action.id, "director_1")


class TestSanitize:
    def test_reserved_keys_are_dropped_and_order_renumbered(self, generated_form):
        sanitized = sanitize_generated_form(generated_form)

        assert [f.field_key for f in sanitized.fields] == ["child_name", "has_allergies", "allergies", "shirt_size"]
        assert [f.display_order for f in sanitized.fields] == [1, 2, 3, 4]

    def test_conditions_on_dropped_fields_are_removed(self, generated_form):
        sanitized = sanitize_generated_form(generated_form)

        allergies = next(f for f in sanitized.fields if f.field_key == "allergies")
        assert [c.field_key for c in allergies.conditional_logic.show_if] == ["has_allergies"]

    def test_preview(self, generated_form):
        preview = build_form_preview(sanitize_generated_form(generated_form))

        assert preview["form_name"] == "Summer Registration"
        assert preview["form_type"] == "registration"
        assert preview["field_count"] == 4
        assert preview["sections"] == ["Camper", "Health"]
        assert preview["fields"][0] == {
            "label": "Child name",
            "type": "Short text",
            "required": True,
            "conditional": False,
            "has_options": False,
        }
        assert preview["fields"][3]["type"] == "Dropdown"
        assert preview["fields"][3]["has_options"] is True


class TestProposal:
    def test_propose_stores_pending_action(self, pending_action, db_session):
        assert pending_action.status == AIActionStatus.PENDING
        assert pending_action.action == "createForm"
        assert pending_action.params["camp_id"] == "camp_1"
        assert pending_action.preview["field_count"] == 4

        events = db_session.query(Event).filter(Event.stream_id == ai_action_stream(pending_action.id)).all()
        assert [e.event_type for e in events] == [EventType.AI_FORM_GENERATION_REQUESTED]

    def test_list_pending_newest_first(self, workflow, generated_form, pending_action):
        newer = workflow.propose("admin_2", "Another", "camp_1", generated_form, organization_id="org_2")

        assert [a.id for a in workflow.list_pending()] == [newer.id, pending_action.id]
        assert [a.id for a in workflow.list_pending("org_1")] == [pending_action.id]

    def test_malformed_proposal_is_refused(self, workflow, generated_form, db_session):
        """A proposal with repeated keys never becomes a pending action."""
        repeated = generated_form.fields[1].model_copy()
        broken = generated_form.model_copy(update={"fields": generated_form.fields + [repeated]})

        with pytest.raises(ConflictError):
            workflow.propose("admin_1", "Duplicate keys", "camp_1", broken)

        assert workflow.list_pending() == []
        assert db_session.query(Event).count() == 0

    def test_proposal_with_dangling_option_parent_is_refused(self, workflow, generated_form):
        shirt_size = generated_form.fields[4]
        orphan = OptionInput(label="Medium", value="M", display_order=3, parent_ref="missing")
        broken_field = shirt_size.model_copy(update={"options": shirt_size.options + [orphan]})
        fields = generated_form.fields[:4] + [broken_field]

        with pytest.raises(ValidationFailedError) as exc_info:
            workflow.propose("admin_1", "Dangling", "camp_1", generated_form.model_copy(update={"fields": fields}))

        assert exc_info.value.field_keys == ["shirt_size"]
        assert workflow.list_pending() == []

    def test_unknown_action_is_not_found(self, workflow):
        with pytest.raises(NotFoundError):
            workflow.get_action(999)


class TestTransitions:
    """
    INVARIANT: pending -> approved -> executed, or pending -> rejected. Nothing else.
    """

    def test_approve_records_approver(self, approved_action):
        assert approved_action.status == AIActionStatus.APPROVED
        assert approved_action.approved_by == "director_1"
        assert approved_action.approved_at is not None

    def test_reject_records_reason(self, workflow, pending_action):
        action = workflow.reject(pending_action.id, "director_1", reason="Too long")

        assert action.status == AIActionStatus.REJECTED
        assert action.error == "Too long"

    def test_approved_action_cannot_be_rejected(self, workflow, approved_action):
        with pytest.raises(InvalidStateError):
            workflow.reject(approved_action.id, "director_1")

    def test_rejected_action_cannot_be_approved(self, workflow, pending_action):
        workflow.reject(pending_action.id, "director_1")

        with pytest.raises(InvalidStateError):
            workflow.approve(pending_action.id, "director_1")

    def test_pending_action_cannot_be_executed(self, workflow, pending_action, db_session):
        with pytest.raises(InvalidStateError):
            workflow.execute(pending_action.id, "director_1")

        assert db_session.query(FormDefinition).count() == 0


class TestExecute:
    def test_execute_creates_draft_form(self, workflow, approved_action, db_session):
        form = workflow.execute(approved_action.id, "director_1")

        assert form.status == FormStatus.DRAFT
        assert form.version == 1
        assert form.ai_action_id == approved_action.id
        assert form.camp_id == "camp_1"
        assert form.created_by == "admin_1"
        assert [f.field_key for f in form.fields] == ["child_name", "has_allergies", "allergies", "shirt_size"]
        assert [o.value for o in form.fields[3].options] == ["S", "L"]

        action = workflow.get_action(approved_action.id)
        assert action.status == AIActionStatus.EXECUTED
        assert action.executed_at is not None

        form_events = db_session.query(Event).filter(Event.stream_id == form_stream(form.id)).all()
        assert [e.event_type for e in form_events] == [EventType.FORM_CREATED_BY_AI]
        action_events = db_session.query(Event).filter(
            Event.stream_id == ai_action_stream(action.id)
        ).order_by(Event.version).all()
        assert [e.event_type for e in action_events] == [
            EventType.AI_FORM_GENERATION_REQUESTED,
            EventType.AI_ACTION_APPROVED,
            EventType.AI_ACTION_EXECUTED,
        ]

    def test_second_execute_is_refused_and_creates_nothing(self, workflow, approved_action, db_session):
        """
        INVARIANT: An approved action executes at most once.
        """
        workflow.execute(approved_action.id, "director_1")

        with pytest.raises(InvalidStateError):
            workflow.execute(approved_action.id, "director_1")

        assert db_session.query(FormDefinition).count() == 1

    def test_failed_execute_rolls_everything_back(self, workflow, approved_action, db_session, monkeypatch):
        def explode(form, field_input):
            raise RuntimeError("disk full")

        monkeypatch.setattr(workflow.forms, "add_field", explode)

        with pytest.raises(RuntimeError):
            workflow.execute(approved_action.id, "director_1")

        assert db_session.query(FormDefinition).count() == 0
        assert db_session.query(FormField).count() == 0
        assert workflow.get_action(approved_action.id).status == AIActionStatus.APPROVED
