"""Configuration schemas for node types.

Every node type declares its configuration as a pydantic model. The
``ConfigField`` metadata the editing surface shows is generated from that
model, and the same metadata drives :func:`validate_config`, which checks an
open key/value configuration before a node is ever dispatched.
"""

import re
import types
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.fields import FieldInfo

from ..models.core import ConfigField, ConfigFieldType, FieldOption, FieldValidation


class NodeConfig(BaseModel):
    """Base configuration shared by every node type."""
    model_config = ConfigDict(extra="allow")

    stop_on_error: bool = Field(
        True,
        title="Stop on Error",
        description="Abort the whole run when this node fails"
    )


def _unwrap_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Union or origin is getattr(types, "UnionType", None):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _literal_options(annotation: Any, labels: Dict[Any, str]) -> Optional[List[FieldOption]]:
    if get_origin(annotation) is not Literal:
        return None
    return [FieldOption(label=labels.get(value, str(value)), value=value) for value in get_args(annotation)]


def _field_type(annotation: Any, extra: Dict[str, Any]) -> Tuple[ConfigFieldType, Optional[List[FieldOption]]]:
    labels = extra.get("option_labels", {})
    options = _literal_options(annotation, labels)
    if options is not None:
        return ConfigFieldType.SELECT, options

    origin = get_origin(annotation)
    if origin in (list, List):
        args = get_args(annotation)
        item_options = _literal_options(args[0], labels) if args else None
        return ConfigFieldType.MULTISELECT, item_options

    if annotation is bool:
        return ConfigFieldType.BOOLEAN, None
    if annotation in (int, float):
        return ConfigFieldType.NUMBER, None
    if annotation is dict or origin in (dict, Dict):
        return ConfigFieldType.TEXTAREA, None
    if extra.get("widget") == "textarea":
        return ConfigFieldType.TEXTAREA, None
    return ConfigFieldType.STRING, None


def _field_validation(field: FieldInfo, annotation: Any) -> Optional[FieldValidation]:
    rules = FieldValidation(integer=annotation is int)
    for constraint in field.metadata:
        if getattr(constraint, "ge", None) is not None:
            rules.min, rules.exclusive_min = constraint.ge, False
        if getattr(constraint, "gt", None) is not None:
            rules.min, rules.exclusive_min = constraint.gt, True
        if getattr(constraint, "le", None) is not None:
            rules.max, rules.exclusive_max = constraint.le, False
        if getattr(constraint, "lt", None) is not None:
            rules.max, rules.exclusive_max = constraint.lt, True
        if getattr(constraint, "pattern", None) is not None:
            rules.pattern = constraint.pattern
    if rules == FieldValidation():
        return None
    return rules


def build_config_schema(model: Type[BaseModel]) -> Dict[str, ConfigField]:
    """
    Generate the configuration schema of a node type from its config model.

    Args:
        model: Pydantic model describing the node configuration

    Returns:
        Mapping from field name to its ``ConfigField`` metadata
    """
    schema: Dict[str, ConfigField] = {}
    for name, field in model.model_fields.items():
        extra = field.json_schema_extra if isinstance(field.json_schema_extra, dict) else {}
        annotation = _unwrap_optional(field.annotation)
        field_type, options = _field_type(annotation, extra)
        if "options" in extra:
            options = [FieldOption(**option) for option in extra["options"]]

        required = field.is_required() or bool(extra.get("required", False))
        default = None if field.is_required() else field.get_default(call_default_factory=True)

        schema[name] = ConfigField(
            type=field_type,
            label=field.title or name.replace("_", " ").title(),
            description=field.description,
            required=required,
            default=default,
            options=options,
            validation=_field_validation(field, annotation)
        )
    return schema


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _fmt(number: float) -> str:
    return f"{number:g}"


def validate_config(schema: Dict[str, ConfigField], config: Dict[str, Any]) -> List[str]:
    """
    Check a configuration mapping against a schema.

    Args:
        schema: Field metadata of the node type
        config: Configuration values to check

    Returns:
        Human-readable violations, empty when the configuration is valid
    """
    errors: List[str] = []

    for name, field in schema.items():
        value = config.get(name)
        label = field.label

        if value is None or (isinstance(value, str) and value == ""):
            if field.required:
                errors.append(f"Required field '{label}' is missing")
            continue

        rules = field.validation

        if field.type == ConfigFieldType.NUMBER:
            number = _as_number(value)
            if number is None:
                errors.append(f"{label} must be a number")
                continue
            if not rules:
                continue
            if rules.integer and not number.is_integer():
                errors.append(f"{label} must be a whole number")
                continue
            if rules.min is not None:
                if rules.exclusive_min and number <= rules.min:
                    errors.append(f"{label} must be greater than {_fmt(rules.min)}")
                elif number < rules.min:
                    errors.append(f"{label} must be at least {_fmt(rules.min)}")
            if rules.max is not None:
                if rules.exclusive_max and number >= rules.max:
                    errors.append(f"{label} must be less than {_fmt(rules.max)}")
                elif number > rules.max:
                    errors.append(f"{label} must be at most {_fmt(rules.max)}")

        elif field.type == ConfigFieldType.STRING:
            if not isinstance(value, str):
                errors.append(f"{label} must be a string")
                continue
            if rules and rules.pattern and not re.search(rules.pattern, value):
                errors.append(f"{label} format is invalid")

        elif field.type == ConfigFieldType.TEXTAREA:
            if isinstance(value, str) and rules and rules.pattern and not re.search(rules.pattern, value):
                errors.append(f"{label} format is invalid")

        elif field.type == ConfigFieldType.BOOLEAN:
            if not isinstance(value, bool):
                errors.append(f"{label} must be a boolean")

        elif field.type == ConfigFieldType.SELECT:
            allowed = [option.value for option in field.options or []]
            if allowed and value not in allowed:
                errors.append(f"{label} must be one of: {', '.join(str(v) for v in allowed)}")

        elif field.type == ConfigFieldType.MULTISELECT:
            if not isinstance(value, list):
                errors.append(f"{label} must be an array")
                continue
            allowed = [option.value for option in field.options or []]
            invalid = [v for v in value if allowed and v not in allowed]
            if invalid:
                errors.append(f"{label} contains invalid values: {', '.join(str(v) for v in invalid)}")

    return errors


def format_violations(error: ValidationError) -> List[str]:
    """Render a pydantic error as ``"field: message"`` lines."""
    return [f"{'.'.join(str(loc) for loc in item['loc'])}: {item['msg']}" for item in error.errors()]


def model_violations(model: Type[BaseModel], config: Dict[str, Any]) -> List[str]:
    """Violations raised when ``config`` is parsed into ``model``; empty when it parses."""
    try:
        model.model_validate(config)
    except ValidationError as e:
        return format_violations(e)
    return []
