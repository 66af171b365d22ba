"""
Dynamic submission validation.

Builds a pydantic model at runtime from a form's field list so a flexible
JSON submission payload can be checked field by field. Every violation is
reported, not just the first one.
"""
from collections.abc import Mapping
from typing import Annotated, Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, create_model

from campforms.services.exceptions import ValidationFailedError
from campforms.services.field_types import get_validator_factory

REQUIRED_MESSAGE = "This field is required"


class FieldSpec(BaseModel):
    """What the validator needs to know about one field."""
    field_key: str
    field_type: str
    validation_rules: Optional[Dict[str, Any]] = None
    options: List[str] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, field: Dict[str, Any]) -> "FieldSpec":
        """Build from a denormalised field as stored in a FormSnapshot."""
        return cls(
            field_key=field["field_key"],
            field_type=field["field_type"],
            validation_rules=field.get("validation_rules") or {},
            options=[option["value"] for option in field.get("options") or []],
        )

    @property
    def required(self) -> bool:
        return bool((self.validation_rules or {}).get("required"))


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _reject_blank(value: Any) -> Any:
    if _is_blank(value):
        raise ValueError(REQUIRED_MESSAGE)
    return value


def _blank_to_none(value: Any) -> Any:
    return None if _is_blank(value) else value


def _message(error: Dict[str, Any]) -> str:
    if error["type"] == "missing":
        return REQUIRED_MESSAGE
    if error["type"] == "value_error" and "ctx" in error:
        return str(error["ctx"]["error"])
    return error["msg"]


class SubmissionValidator:
    """Validates submission payloads against a fixed list of fields."""

    def __init__(self, model, specs: List[FieldSpec]):
        self.model = model
        self.specs = specs
        self._key_by_loc: Dict[Union[str, int], str] = {}
        for index, spec in enumerate(specs):
            self._key_by_loc[f"field_{index}"] = spec.field_key
            self._key_by_loc[spec.field_key] = spec.field_key
        self._custom_messages = {
            spec.field_key: (spec.validation_rules or {}).get("custom_error_message")
            for spec in specs
        }

    def validate(self, payload: Any) -> List[Tuple[str, str]]:
        """
        Return every (field_key, message) violation in the payload.

        Keys the form does not declare are ignored.
        """
        if not isinstance(payload, Mapping):
            return [("", "Submission must be an object keyed by field")]

        try:
            self.model.model_validate(dict(payload))
        except ValidationError as e:
            return self._violations(e)
        return []

    def check(self, payload: Any) -> None:
        """Raise ValidationFailedError listing every violation."""
        violations = self.validate(payload)
        if violations:
            raise ValidationFailedError(violations)

    def _violations(self, exc: ValidationError) -> List[Tuple[str, str]]:
        violations: List[Tuple[str, str]] = []
        for error in exc.errors():
            loc = error["loc"]
            key = self._key_by_loc.get(loc[0], str(loc[0])) if loc else ""
            message = _message(error)
            custom = self._custom_messages.get(key)
            if custom and message != REQUIRED_MESSAGE:
                message = custom
            if (key, message) not in violations:
                violations.append((key, message))
        return violations


def build_submission_validator(fields: Iterable[Union[FieldSpec, Dict[str, Any]]]) -> SubmissionValidator:
    """
    Build a validator from an ordered list of field descriptors.

    Required fields must be present and non-empty; optional fields that are
    missing, null or blank are skipped. Each field's type comes from the
    field type registry, so unknown types validate as free text.
    """
    specs: List[FieldSpec] = []
    definitions: Dict[str, Any] = {}
    seen = set()

    for index, field in enumerate(fields):
        spec = field if isinstance(field, FieldSpec) else FieldSpec.model_validate(field)
        if spec.field_key in seen:
            raise ValueError(f"Duplicate field key: {spec.field_key}")
        seen.add(spec.field_key)
        specs.append(spec)

        factory = get_validator_factory(spec.field_type)
        annotation = factory(spec.validation_rules or {}, spec.options)
        name = f"field_{index}"

        if spec.required:
            definitions[name] = (
                Annotated[annotation, BeforeValidator(_reject_blank)],
                Field(validation_alias=spec.field_key),
            )
        else:
            definitions[name] = (
                Annotated[Optional[annotation], BeforeValidator(_blank_to_none)],
                Field(default=None, validation_alias=spec.field_key),
            )

    model = create_model(
        "SubmissionPayload",
        __config__=ConfigDict(extra="ignore"),
        **definitions,
    )
    return SubmissionValidator(model, specs)
