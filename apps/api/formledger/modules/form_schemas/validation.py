"""
Committed-payload validation against a schema's field definitions.

field_definitions shape (camelCase, as authored by form designers):

    {"fields": [
        {"fieldName": "orderId", "fieldType": "text", "required": true,
         "validation": {"pattern": "ORD-[0-9]{5}", "minLength": 9, "maxLength": 9}},
        {"fieldName": "quantity", "fieldType": "number", "validation": {"min": 1, "max": 100}},
        {"fieldName": "deliveryLocations", "fieldType": "multivalue", "minValues": 1, "maxValues": 5},
        {"fieldName": "shipDate", "fieldType": "date"},
        {"fieldName": "contact", "fieldType": "subform", "subFields": [...]},
        {"fieldName": "lines", "fieldType": "table", "columns": [...]}
    ]}

Errors carry the dotted field path (`contact.email`, `lines[2].sku`).
Unknown field types are accepted as-is.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Any, Dict, List

from formledger.core.errors import ValidationError
from formledger.core.observability import emit

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _fail(path: str, message: str) -> None:
    raise ValidationError(f"{path}: {message}", {"field": path})


def _is_empty(value: Any, field_type: str) -> bool:
    if value is None:
        return True
    if field_type in ("multivalue", "table"):
        return not isinstance(value, list) or not value
    if field_type == "subform":
        return not isinstance(value, dict) or not value
    if field_type == "checkbox":
        return False
    return str(value).strip() == ""


def _check_text(path: str, value: Any, rules: Dict[str, Any]) -> None:
    if not isinstance(value, str):
        _fail(path, "expected text value")
    pattern = rules.get("pattern")
    if pattern and re.fullmatch(pattern, value) is None:
        _fail(path, f"value does not match required pattern: {pattern}")
    if "minLength" in rules and len(value) < int(rules["minLength"]):
        _fail(path, "value is too short")
    if "maxLength" in rules and len(value) > int(rules["maxLength"]):
        _fail(path, "value is too long")


def _check_number(path: str, value: Any, rules: Dict[str, Any]) -> None:
    # bool is an int subclass but never a valid number here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, "expected numeric value")
    if "min" in rules and value < float(rules["min"]):
        _fail(path, "value is below minimum")
    if "max" in rules and value > float(rules["max"]):
        _fail(path, "value exceeds maximum")


def _check_multivalue(path: str, value: Any, field: Dict[str, Any]) -> None:
    if not isinstance(value, list):
        _fail(path, "expected array value")
    if "minValues" in field and len(value) < int(field["minValues"]):
        _fail(path, "too few values")
    if "maxValues" in field and len(value) > int(field["maxValues"]):
        _fail(path, "too many values")


def _check_date(path: str, value: Any) -> None:
    if not isinstance(value, str):
        _fail(path, "expected date string")
    try:
        if not _ISO_DATE.match(value):
            raise ValueError(value)
        date.fromisoformat(value)
    except ValueError:
        _fail(path, "invalid date format, expected ISO date (YYYY-MM-DD)")


def _check_value(path: str, value: Any, field: Dict[str, Any], field_type: str) -> None:
    rules = field.get("validation") or {}
    if field_type == "text":
        _check_text(path, value, rules)
    elif field_type == "number":
        _check_number(path, value, rules)
    elif field_type == "multivalue":
        _check_multivalue(path, value, field)
    elif field_type == "date":
        _check_date(path, value)


def _validate_fields(data: Dict[str, Any], fields: List[Any], prefix: str) -> None:
    for field in fields:
        if not isinstance(field, dict) or not field.get("fieldName"):
            continue
        name = str(field["fieldName"])
        field_type = str(field.get("fieldType") or "")
        path = f"{prefix}.{name}" if prefix else name
        value = data.get(name)

        if _is_empty(value, field_type):
            if field.get("required"):
                _fail(path, "field is required but missing")
        else:
            _check_value(path, value, field, field_type)

        if value is None:
            continue
        if field_type == "subform" and isinstance(field.get("subFields"), list):
            if not isinstance(value, dict):
                _fail(path, "expected object value for subform")
            _validate_fields(value, field["subFields"], path)
        elif field_type == "table" and isinstance(field.get("columns"), list):
            if not isinstance(value, list):
                _fail(path, "expected array value for table")
            for i, row in enumerate(value):
                row_path = f"{path}[{i}]"
                if not isinstance(row, dict):
                    _fail(row_path, "expected object row in table")
                _validate_fields(row, field["columns"], row_path)


def validate_order_data(payload: Dict[str, Any], schema: Dict[str, Any]) -> None:
    """Raise ValidationError on the first payload field that breaks the schema's rules."""
    fields = (schema.get("field_definitions") or {}).get("fields")
    if not isinstance(fields, list):
        emit(
            "warning",
            "schema.validation.skipped",
            f"schema has no field definitions: {schema.get('form_version_id')}",
            module=__name__,
            form_version_id=schema.get("form_version_id"),
        )
        return
    _validate_fields(payload, fields, "")
