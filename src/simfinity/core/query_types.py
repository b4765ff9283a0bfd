"""
Pydantic models for the filter/sort/paginate argument DSL.

Wire shapes:

    {"name": {"operator": "LIKE", "value": "Smith"}}           # scalar field
    {"customer": {"terms": [{"path": "name", "operator": "EQ", "value": "Ann"}]}}
    {"sort": {"terms": [{"field": "name", "order": "DESC"}]}}
    {"pagination": {"page": 2, "size": 10, "count": true}}
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


class Operator(str, Enum):
    """Comparison operators accepted in filter terms."""
    EQ = "EQ"
    LT = "LT"
    GT = "GT"
    LTE = "LTE"
    GTE = "GTE"
    BTW = "BTW"
    NE = "NE"
    IN = "IN"
    NIN = "NIN"
    LIKE = "LIKE"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class FilterTerm(BaseModel):
    """
    Filter on a scalar field.

    A missing operator means equality.
    """
    operator: Optional[Operator] = None
    value: Any = None

    @model_validator(mode="after")
    def _check_value_shape(self) -> "FilterTerm":
        if self.operator == Operator.BTW:
            if not isinstance(self.value, (list, tuple)) or len(self.value) != 2:
                raise ValueError("BTW expects a two-element value")
        elif self.operator in (Operator.IN, Operator.NIN):
            if not isinstance(self.value, (list, tuple)):
                raise ValueError(f"{self.operator.value} expects a list value")
        return self


class PathFilterTerm(FilterTerm):
    """Filter on a (possibly dotted) path inside a related entity."""
    path: str


class FilterExpression(BaseModel):
    """Filter on a relation field: a list of path terms."""
    terms: list[PathFilterTerm] = Field(default_factory=list)


class SortTerm(BaseModel):
    field: str
    order: SortOrder


class SortExpression(BaseModel):
    terms: list[SortTerm] = Field(default_factory=list)


class Pagination(BaseModel):
    """
    Page-based pagination.

    ``count`` additionally asks for the total size of the filtered set.
    """
    page: int = Field(ge=1)
    size: int = Field(ge=1)
    count: bool = False


class ListArguments(BaseModel):
    """Parsed arguments of a list endpoint."""
    filters: dict[str, FilterTerm | FilterExpression] = Field(default_factory=dict)
    sort: Optional[SortExpression] = None
    pagination: Optional[Pagination] = None

    @property
    def is_empty(self) -> bool:
        return not self.filters and self.sort is None and self.pagination is None
