"""
Scalar type names and value coercion.

The document store keeps identifiers as ObjectId and every calendar/time
value as a datetime, so both the materializer and the query compiler run
incoming scalars through these helpers.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any

from bson import ObjectId
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


ID = "ID"
STRING = "String"
INT = "Int"
FLOAT = "Float"
BOOLEAN = "Boolean"
DATETIME = "DateTime"
DATE = "Date"
TIME = "Time"
JSON = "JSON"

SCALAR_TYPES = frozenset({ID, STRING, INT, FLOAT, BOOLEAN, DATETIME, DATE, TIME, JSON})
DATE_TYPES = frozenset({DATETIME, DATE, TIME})

_EPOCH = date(1970, 1, 1)

_datetime_adapter = TypeAdapter(datetime)
_date_adapter = TypeAdapter(date)
_time_adapter = TypeAdapter(time)


def is_scalar_type(type_name: Any) -> bool:
    return isinstance(type_name, str) and type_name in SCALAR_TYPES


def is_date_type(type_name: Any) -> bool:
    return isinstance(type_name, str) and type_name in DATE_TYPES


def coerce_date(type_name: str, value: Any) -> Any:
    """
    Convert textual date/time input to a datetime.

    Lists are converted element-wise; None passes through.
    """
    if isinstance(value, list):
        return [coerce_date(type_name, item) for item in value]
    if value is None or isinstance(value, datetime):
        return value

    try:
        if type_name == DATE:
            return datetime.combine(_date_adapter.validate_python(value), time())
        if type_name == TIME:
            return datetime.combine(_EPOCH, _time_adapter.validate_python(value))
        return _datetime_adapter.validate_python(value)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {type_name} value: {value!r}", cause=e)


def to_reference(value: Any) -> ObjectId:
    """Convert an identifier to the store's native reference type."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, dict) and "id" in value:
        value = value["id"]
    if not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid identifier: {value!r}")
    return ObjectId(value)


def is_reference_like(value: Any) -> bool:
    """Check whether a value can be converted to a reference."""
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))
