"""API routes for form definitions, submissions and AI form proposals."""
from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from campforms.database import get_db
from campforms.models.enums import FormStatus
from campforms.services.ai_workflow import AIFormWorkflow
from campforms.services.exceptions import (
    FormEngineError,
    NotFoundError,
    ValidationFailedError,
    SnapshotMissingError,
    ConflictError,
    InvalidStateError
)
from campforms.services.field_types import FIELD_TYPES, get_field_type_label, supports_options
from campforms.services.form_store import FormStore
from campforms.services.snapshots import SnapshotManager
from campforms.services.submissions import SubmissionProcessor
from campforms.api.schemas import (
    FormCreate,
    FormUpdate,
    FormDefinitionResponse,
    FormDetailResponse,
    FormSnapshotResponse,
    SubmissionCreate,
    FormSubmissionResponse,
    AIProposalCreate,
    AIActionReject,
    AIActionResponse,
    ErrorResponse
)

router = APIRouter()

REFUSALS = {
    409: {"model": ErrorResponse, "description": "Refusal - conflict, wrong state or missing snapshot"},
    422: {"model": ErrorResponse, "description": "Refusal - validation failed"},
}


def current_user(x_user_id: str = Header(..., min_length=1)) -> str:
    """Acting user, supplied by the caller. Authorisation happens upstream."""
    return x_user_id


def _http_error(e: FormEngineError) -> HTTPException:
    """Translate an engine refusal into an HTTP error with a stable code."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    if isinstance(e, ValidationFailedError):
        status_code, code = status.HTTP_422_UNPROCESSABLE_ENTITY, "validation_failed"
    elif isinstance(e, SnapshotMissingError):
        status_code, code = status.HTTP_409_CONFLICT, "snapshot_missing"
    elif isinstance(e, InvalidStateError):
        status_code, code = status.HTTP_409_CONFLICT, "invalid_state"
    elif isinstance(e, ConflictError):
        status_code, code = status.HTTP_409_CONFLICT, "conflict"
    else:
        status_code, code = status.HTTP_400_BAD_REQUEST, "refused"

    body = ErrorResponse(code=code, message=e.message, violations=getattr(e, "violations", []))
    return HTTPException(status_code=status_code, detail=body.model_dump())


# Field type endpoints
@router.get("/field-types")
def list_field_types():
    """Known field types with their display labels."""
    return [
        {"type": field_type, "label": get_field_type_label(field_type), "supports_options": supports_options(field_type)}
        for field_type in FIELD_TYPES
    ]


# Form endpoints
@router.post("/forms", response_model=FormDefinitionResponse, status_code=status.HTTP_201_CREATED)
def create_form(form_data: FormCreate, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    """Create an empty draft form at version 1."""
    return FormStore(db).create(form_data.scope, form_data.metadata, created_by=user_id)


@router.get("/forms", response_model=List[FormDefinitionResponse])
def list_forms(
    camp_id: str,
    session_id: Optional[str] = None,
    status_filter: Optional[FormStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    """List a camp's forms, newest first."""
    return FormStore(db).list_forms(camp_id, session_id=session_id, status=status_filter)


@router.get("/forms/{form_id}", response_model=FormDetailResponse)
def get_form(form_id: int, db: Session = Depends(get_db)):
    """Get a form with its fields and options in display order."""
    try:
        return FormStore(db).get_form_complete(form_id)
    except FormEngineError as e:
        raise _http_error(e)


@router.put("/forms/{form_id}", response_model=FormDetailResponse, responses=REFUSALS)
def update_form(
    form_id: int,
    update_data: FormUpdate,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db)
):
    """
    Replace a form's metadata and fields.

    WILL REFUSE if:
    - a field's key or type would change in place
    - field keys repeat
    - expected_version is stale
    """
    store = FormStore(db)
    try:
        store.update_definition(
            form_id,
            update_data.metadata,
            update_data.fields,
            user_id=user_id,
            expected_version=update_data.expected_version
        )
        return store.get_form_complete(form_id)
    except FormEngineError as e:
        raise _http_error(e)


@router.post("/forms/{form_id}/publish", response_model=FormDefinitionResponse, responses=REFUSALS)
def publish_form(form_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    """Publish a form and snapshot its current version."""
    try:
        return FormStore(db).publish(form_id, user_id)
    except FormEngineError as e:
        raise _http_error(e)


@router.post("/forms/{form_id}/archive", response_model=FormDefinitionResponse)
def archive_form(form_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    try:
        return FormStore(db).archive(form_id, user_id)
    except FormEngineError as e:
        raise _http_error(e)


# Snapshot endpoints
@router.get("/forms/{form_id}/snapshots", response_model=List[FormSnapshotResponse])
def list_snapshots(form_id: int, db: Session = Depends(get_db)):
    try:
        FormStore(db).get_form(form_id)
    except FormEngineError as e:
        raise _http_error(e)
    return SnapshotManager(db).list_snapshots(form_id)


@router.get("/forms/{form_id}/snapshots/{version}", response_model=FormSnapshotResponse, responses=REFUSALS)
def get_snapshot(form_id: int, version: int, db: Session = Depends(get_db)):
    try:
        return SnapshotManager(db).get_snapshot(form_id, version)
    except FormEngineError as e:
        raise _http_error(e)


# Submission endpoints
@router.post(
    "/forms/{form_id}/submissions",
    response_model=FormSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS
)
def submit_form(
    form_id: int,
    submission_data: SubmissionCreate,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db)
):
    """
    Submit answers to a published form.

    WILL REFUSE if:
    - the form (or the requested version) was never published
    - any field fails validation; every violation is reported
    """
    try:
        return SubmissionProcessor(db).submit_form(
            form_id,
            submission_data.submission_data,
            user_id=user_id,
            child_id=submission_data.child_id,
            registration_id=submission_data.registration_id,
            session_id=submission_data.session_id,
            form_version=submission_data.form_version
        )
    except FormEngineError as e:
        raise _http_error(e)


@router.get("/forms/{form_id}/submissions", response_model=List[FormSubmissionResponse])
def list_form_submissions(form_id: int, db: Session = Depends(get_db)):
    """List a form's submissions, newest first."""
    return SubmissionProcessor(db).submissions_by_form(form_id)


@router.get("/users/{user_id}/submissions", response_model=List[FormSubmissionResponse])
def list_user_submissions(user_id: str, db: Session = Depends(get_db)):
    return SubmissionProcessor(db).submissions_by_user(user_id)


# AI action endpoints
@router.post("/ai-actions", response_model=AIActionResponse, status_code=status.HTTP_201_CREATED, responses=REFUSALS)
def propose_form(proposal: AIProposalCreate, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    """Store an AI-generated form as a pending proposal."""
    try:
        return AIFormWorkflow(db).propose(
            user_id,
            proposal.prompt,
            proposal.camp_id,
            proposal.generated_form,
            session_id=proposal.session_id,
            organization_id=proposal.organization_id
        )
    except FormEngineError as e:
        raise _http_error(e)


@router.get("/ai-actions/pending", response_model=List[AIActionResponse])
def list_pending_actions(organization_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Pending form proposals, newest first."""
    return AIFormWorkflow(db).list_pending(organization_id)


@router.get("/ai-actions/{action_id}", response_model=AIActionResponse)
def get_action(action_id: int, db: Session = Depends(get_db)):
    try:
        return AIFormWorkflow(db).get_action(action_id)
    except FormEngineError as e:
        raise _http_error(e)


@router.post("/ai-actions/{action_id}/approve", response_model=AIActionResponse, responses=REFUSALS)
def approve_action(action_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    try:
        return AIFormWorkflow(db).approve(action_id, user_id)
    except FormEngineError as e:
        raise _http_error(e)


@router.post("/ai-actions/{action_id}/reject", response_model=AIActionResponse, responses=REFUSALS)
def reject_action(
    action_id: int,
    reject_data: AIActionReject,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db)
):
    try:
        return AIFormWorkflow(db).reject(action_id, user_id, reason=reject_data.reason)
    except FormEngineError as e:
        raise _http_error(e)


@router.post(
    "/ai-actions/{action_id}/execute",
    response_model=FormDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses=REFUSALS
)
def execute_action(action_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    """
    Create the draft form described by an approved proposal.

    WILL REFUSE if the proposal is not approved, including when it has
    already been executed.
    """
    try:
        form = AIFormWorkflow(db).execute(action_id, user_id)
        return FormStore(db).get_form_complete(form.id)
    except FormEngineError as e:
        raise _http_error(e)
