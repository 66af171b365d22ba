"""Pydantic schemas for request/response validation and for form structure inputs."""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, Field, field_validator
from campforms.models.enums import (
    FormType,
    FormStatus,
    ConditionOperator,
    SubmissionStatus,
    AIActionStatus
)


# Form structure inputs
class ValidationRules(BaseModel):
    required: Optional[bool] = None
    min_length: Optional[int] = Field(None, gt=0)
    max_length: Optional[int] = Field(None, gt=0)
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    custom_error_message: Optional[str] = None

    @field_validator("pattern")
    @classmethod
    def pattern_must_compile(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"Invalid pattern: {e}")
        return value


class Condition(BaseModel):
    field_key: str
    operator: ConditionOperator
    value: Union[bool, float, str, List[str], None] = None


class ConditionalLogic(BaseModel):
    show_if: List[Condition] = []


class TriggersFields(BaseModel):
    field_keys: List[str] = []


class OptionInput(BaseModel):
    """
    One option in a field edit.

    ref is a client-side handle; parent_ref points at another option's ref
    in the same field to build nested (cascading) choices.
    """
    ref: Optional[str] = None
    parent_ref: Optional[str] = None
    label: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)
    display_order: int = 0
    triggers_fields: Optional[TriggersFields] = None


class FieldInput(BaseModel):
    """One field in a form edit. id is set for fields that already exist."""
    id: Optional[int] = None
    field_key: str = Field(..., min_length=1, max_length=100)
    label: str = Field(..., min_length=1)
    description: Optional[str] = None
    field_type: str = Field(..., min_length=1)
    validation_rules: Optional[ValidationRules] = None
    conditional_logic: Optional[ConditionalLogic] = None
    display_order: int = 0
    section_name: Optional[str] = None
    options: List[OptionInput] = []


class FormMetadata(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    form_type: FormType


class FormScope(BaseModel):
    organization_id: Optional[str] = None
    camp_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None


class AIFormGeneration(BaseModel):
    """Form structure proposed by the AI assistant."""
    form_definition: FormMetadata
    fields: List[FieldInput] = []


# Form request schemas
class FormCreate(BaseModel):
    scope: FormScope
    metadata: FormMetadata


class FormUpdate(BaseModel):
    metadata: FormMetadata
    fields: List[FieldInput] = []
    expected_version: Optional[int] = None


# Form response schemas
class FormOptionResponse(BaseModel):
    id: int
    parent_option_id: Optional[int]
    label: str
    value: str
    display_order: int
    triggers_fields: Optional[Dict[str, Any]]

    class Config:
        from_attributes = True


class FormFieldResponse(BaseModel):
    id: int
    field_key: str
    label: str
    description: Optional[str]
    field_type: str
    validation_rules: Optional[Dict[str, Any]]
    conditional_logic: Optional[Dict[str, Any]]
    display_order: int
    section_name: Optional[str]
    options: List[FormOptionResponse] = []

    class Config:
        from_attributes = True


class FormDefinitionResponse(BaseModel):
    id: int
    organization_id: Optional[str]
    camp_id: str
    session_id: Optional[str]
    created_by: str
    name: str
    description: Optional[str]
    form_type: FormType
    status: FormStatus
    is_published: bool
    published_at: Optional[datetime]
    version: int
    ai_action_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FormDetailResponse(FormDefinitionResponse):
    fields: List[FormFieldResponse] = []


class FormSnapshotResponse(BaseModel):
    id: int
    form_definition_id: int
    version: int
    snapshot: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


# Submission schemas
class SubmissionCreate(BaseModel):
    submission_data: Dict[str, Any]
    child_id: Optional[str] = None
    registration_id: Optional[str] = None
    session_id: Optional[str] = None
    form_version: Optional[int] = None


class FormSubmissionResponse(BaseModel):
    id: int
    form_definition_id: int
    form_version: int
    user_id: Optional[str]
    child_id: Optional[str]
    registration_id: Optional[str]
    session_id: Optional[str]
    status: SubmissionStatus
    submission_data: Dict[str, Any]
    submitted_at: datetime

    class Config:
        from_attributes = True


# AI action schemas
class AIProposalCreate(BaseModel):
    organization_id: Optional[str] = None
    prompt: str = Field(..., min_length=1)
    camp_id: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    generated_form: AIFormGeneration


class AIActionReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AIActionResponse(BaseModel):
    id: int
    organization_id: Optional[str]
    user_id: str
    action: str
    params: Dict[str, Any]
    preview: Dict[str, Any]
    status: AIActionStatus
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    executed_at: Optional[datetime]
    error: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# Error response
class ErrorResponse(BaseModel):
    """Response when the engine refuses an operation."""
    code: str
    message: str
    violations: List[Tuple[str, str]] = []
