"""
Utility functions for Simfinity.

Includes:
- Case conversion for generated names
- Emptiness check used when materializing input
"""

from __future__ import annotations

import re
from typing import Any


# Pre-compiled regex pattern for better performance
_SNAKE_TO_CAMEL_PATTERN = re.compile(r'_([a-z])')


def to_camel_case(name: str) -> str:
    """
    Convert snake_case to camelCase.

    Examples:
        line_items -> lineItems
        first_name -> firstName
    """
    def replace_underscore(match):
        return match.group(1).upper()

    return _SNAKE_TO_CAMEL_PATTERN.sub(replace_underscore, name)


def to_pascal_case(name: str) -> str:
    """
    Convert snake_case or camelCase to PascalCase.

    Examples:
        line_items -> LineItems
        order -> Order
    """
    camel = to_camel_case(name)
    return camel[0].upper() + camel[1:] if camel else camel


def is_empty(value: Any) -> bool:
    """
    Check whether an input value counts as absent.

    None and "" are empty; False and 0 are values.
    """
    return value is None or (isinstance(value, str) and value == "")
