"""
Field type registry.

Maps each field type to a validator factory - a function that turns the
field's validation rules and option values into a pydantic type annotation.
Unknown types fall back to plain free text so forms proposed with newer
types still load.
"""
import re
from datetime import date, datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Union

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BeforeValidator, Field, StrictBool

from campforms.models.enums import FieldType

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"

FIELD_TYPE_LABELS: Dict[str, str] = {
    FieldType.TEXT.value: "Short text",
    FieldType.TEXTAREA.value: "Long answer",
    FieldType.EMAIL.value: "Email",
    FieldType.PHONE.value: "Phone number",
    FieldType.NUMBER.value: "Number",
    FieldType.DATE.value: "Date",
    FieldType.SELECT.value: "Dropdown",
    FieldType.RADIO.value: "Multiple choice",
    FieldType.CHECKBOX.value: "Checkboxes",
    FieldType.MULTISELECT.value: "Multi-select",
    FieldType.BOOLEAN.value: "Yes / No",
}

OPTION_FIELD_TYPES = frozenset({
    FieldType.SELECT.value,
    FieldType.RADIO.value,
    FieldType.CHECKBOX.value,
    FieldType.MULTISELECT.value,
})

# Scope identifiers are filled in by the application, never asked of parents
RESERVED_FIELD_KEYS = frozenset({
    "camp_id",
    "campid",
    "session_id",
    "sessionid",
    "registration_id",
    "registrationid",
    "child_id",
    "childid",
    "user_id",
    "userid",
})

ValidatorFactory = Callable[[Dict[str, Any], List[str]], Any]


def _value(field_type) -> str:
    return field_type.value if isinstance(field_type, FieldType) else str(field_type)


def supports_options(field_type) -> bool:
    """Whether the field type carries an option list."""
    return _value(field_type) in OPTION_FIELD_TYPES


def get_field_type_label(field_type) -> str:
    value = _value(field_type)
    return FIELD_TYPE_LABELS.get(value, value)


def is_known_field_type(field_type) -> bool:
    return _value(field_type) in _FACTORIES


def is_reserved_field_key(field_key: str) -> bool:
    normalized = field_key.strip().lower().replace("-", "_")
    return normalized in RESERVED_FIELD_KEYS


def _matches(pattern: str, message: Optional[str]):
    compiled = re.compile(pattern)

    def check(value: str) -> str:
        if not compiled.search(value):
            raise ValueError(message or "Invalid format")
        return value

    return AfterValidator(check)


def _check_email(value: str) -> str:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: {e}")
    return value


def _reject_non_numbers(value):
    # bool is an int subclass and numeric strings would coerce in lax mode
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("Input should be a number")
    return value


def _string_type(rules: Dict[str, Any], *extra) -> Any:
    constraints = Field(
        strict=True,
        min_length=rules.get("min_length"),
        max_length=rules.get("max_length"),
    )
    metadata = [constraints, *extra]
    if rules.get("pattern"):
        metadata.append(_matches(rules["pattern"], rules.get("custom_error_message")))
    return Annotated[(str, *metadata)]


def text_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return _string_type(rules)


def email_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return _string_type(rules, AfterValidator(_check_email))


def phone_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return Annotated[str, Field(strict=True), _matches(PHONE_PATTERN, "Invalid phone number")]


def number_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return Annotated[
        float,
        Field(ge=rules.get("min"), le=rules.get("max")),
        BeforeValidator(_reject_non_numbers),
    ]


def _check_iso_date(value: str) -> str:
    try:
        date.fromisoformat(value)
    except ValueError:
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise ValueError("Invalid date, expected YYYY-MM-DD")
    return value


def date_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    # ISO strings only; numbers would otherwise pass as timestamps
    return Annotated[str, Field(strict=True), AfterValidator(_check_iso_date)]


def boolean_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return StrictBool


def single_choice_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    if not options:
        return Annotated[str, Field(strict=True)]
    return Literal[tuple(options)]


def multi_choice_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    if not options:
        return List[Annotated[str, Field(strict=True)]]
    return List[Literal[tuple(options)]]


def checkbox_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    # A checkbox without options is a single tick box (e.g. "I agree")
    if not options:
        return Union[StrictBool, List[Annotated[str, Field(strict=True)]]]
    return multi_choice_factory(rules, options)


def free_text_factory(rules: Dict[str, Any], options: List[str]) -> Any:
    return Annotated[str, Field(strict=True)]


_FACTORIES: Dict[str, ValidatorFactory] = {
    FieldType.TEXT.value: text_factory,
    FieldType.TEXTAREA.value: text_factory,
    FieldType.EMAIL.value: email_factory,
    FieldType.PHONE.value: phone_factory,
    FieldType.NUMBER.value: number_factory,
    FieldType.DATE.value: date_factory,
    FieldType.SELECT.value: single_choice_factory,
    FieldType.RADIO.value: single_choice_factory,
    FieldType.CHECKBOX.value: checkbox_factory,
    FieldType.MULTISELECT.value: multi_choice_factory,
    FieldType.BOOLEAN.value: boolean_factory,
}

FIELD_TYPES = tuple(_FACTORIES)


def get_validator_factory(field_type) -> ValidatorFactory:
    """Validator factory for a type; unknown types get unconstrained free text."""
    return _FACTORIES.get(_value(field_type), free_text_factory)
