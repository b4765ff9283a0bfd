"""
Query compiler - list arguments to an aggregation pipeline.

Converts per-field filters, sort terms and pagination into an ordered list
of stages for one entity:

    $lookup/$unwind pairs (first-use order)
    $match
    $sort              (not for count)
    $limit, $skip      (not for count)
    $count: "size"     (count only)

Usage:
    compiler = QueryCompiler(registry)
    args = compiler.parse_arguments("Order", {
        "customer": {"terms": [{"path": "name", "operator": "LIKE", "value": "Ann"}]},
        "pagination": {"page": 2, "size": 10},
    })
    pipeline = compiler.compile(args, "Order")
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from simfinity.core.defs import EntityDef, FieldDef, FieldKind, FieldVisitor, OBJECT_KINDS
from simfinity.core.errors import ValidationError
from simfinity.core.query_types import (
    FilterExpression,
    FilterTerm,
    ListArguments,
    Operator,
    Pagination,
    PathFilterTerm,
    SortExpression,
    SortOrder,
)
from simfinity.core.registry import EntityDescriptor, TypeRegistry
from simfinity.core.scalars import ID, coerce_date, is_date_type, is_reference_like, to_reference

logger = logging.getLogger(__name__)


DEFAULT_LIMIT = 100
COUNT_FIELD = "size"

RESERVED_ARGUMENTS = frozenset({"sort", "pagination"})
ID_CONVERTED_OPERATORS = frozenset({Operator.EQ, Operator.NE, Operator.IN, Operator.NIN})


# =============================================================================
# Match clauses
# =============================================================================


def _is_id_shaped(key: str) -> bool:
    return key == "_id" or key.endswith("_id")


def _convert_ids(value: Any) -> Any:
    if isinstance(value, list):
        return [_convert_ids(item) for item in value]
    return to_reference(value) if is_reference_like(value) else value


def build_condition(operator: Optional[Operator], value: Any) -> Any:
    """Map one operator/value pair to its match condition."""
    if operator is None or operator == Operator.EQ:
        return value
    if operator == Operator.LT:
        return {"$lt": value}
    if operator == Operator.GT:
        return {"$gt": value}
    if operator == Operator.LTE:
        return {"$lte": value}
    if operator == Operator.GTE:
        return {"$gte": value}
    if operator == Operator.NE:
        return {"$ne": value}
    if operator == Operator.BTW:
        return {"$gte": value[0], "$lte": value[1]}
    if operator == Operator.IN:
        return {"$in": list(value or [])}
    if operator == Operator.NIN:
        return {"$nin": list(value or [])}
    if operator == Operator.LIKE:
        return {"$regex": f".*{re.escape(str(value))}.*"}
    raise ValidationError(f"Unsupported operator: {operator}")


def _coerce_term_value(f: FieldDef, key: str, term: FilterTerm) -> Any:
    value = term.value
    if is_date_type(f.type):
        return coerce_date(f.type, value)
    operator = term.operator or Operator.EQ
    if operator in ID_CONVERTED_OPERATORS and (f.type == ID or _is_id_shaped(key)):
        return _convert_ids(value)
    return value


# =============================================================================
# Pipeline construction
# =============================================================================


@dataclass
class _Pipeline:
    """Stages collected while walking the filters."""
    joins: list[dict] = field(default_factory=list)
    aliases: set[str] = field(default_factory=set)
    match: dict[str, Any] = field(default_factory=dict)

    def join(self, alias: str, lookup: dict) -> None:
        if alias in self.aliases:
            return
        self.aliases.add(alias)
        self.joins.append({"$lookup": {**lookup, "as": alias}})
        self.joins.append({"$unwind": {"path": f"${alias}", "preserveNullAndEmptyArrays": True}})

    def add_match(self, key: str, condition: Any) -> None:
        if key not in self.match:
            self.match[key] = condition
        else:
            self.match.setdefault("$and", []).append({key: condition})


class _FilterBuilder(FieldVisitor):
    """Adds the joins and match clauses of one filtered field."""

    def __init__(self, registry: TypeRegistry, pipeline: _Pipeline):
        self.registry = registry
        self.pipeline = pipeline

    def _scalar(self, f: FieldDef, term: Any):
        if not isinstance(term, FilterTerm):
            raise ValidationError(f"{f.name} expects {{operator, value}}")
        key = "_id" if f.is_identifier else f.name
        self.pipeline.add_match(key, build_condition(term.operator, _coerce_term_value(f, key, term)))

    visit_scalar = _scalar
    visit_enum = _scalar
    visit_scalar_list = _scalar

    def _relation(self, f: FieldDef, expression: Any):
        if not isinstance(expression, FilterExpression):
            raise ValidationError(f"{f.name} expects {{terms: [...]}}")
        for term in expression.terms:
            self._walk(f, term)

    visit_embedded_object = _relation
    visit_embedded_list = _relation
    visit_referenced_object = _relation
    visit_referenced_list = _relation

    def _lookup(self, f: FieldDef, local_prefix: str) -> dict:
        target = self.registry.require(f.target, referrer=f.name)
        connection = f.relation.connection_field
        if f.many:
            return {"from": target.collection, "foreignField": connection, "localField": f"{local_prefix}_id"}
        return {"from": target.collection, "foreignField": "_id", "localField": f"{local_prefix}{connection}"}

    def _walk(self, root: FieldDef, term: PathFilterTerm) -> None:
        """
        Follow a dotted path from ``root``.

        Referenced hops join under an alias accumulated from the path,
        embedded hops extend the addressed sub-document path.
        """
        alias = root.name
        embedded: list[str] = []
        if not root.relation.embedded:
            self.pipeline.join(alias, self._lookup(root, local_prefix=""))

        current: EntityDef = self.registry.require(root.target, referrer=root.name).entity
        segments = term.path.split(".")

        for index, segment in enumerate(segments):
            f = current.get_field(segment)
            if f is None:
                raise ValidationError(f"{current.name} has no field '{segment}' (in {root.name}.{term.path})")
            last = index == len(segments) - 1

            if f.kind not in OBJECT_KINDS:
                if not last:
                    raise ValidationError(f"'{segment}' is not a relation (in {root.name}.{term.path})")
                leaf = "_id" if f.is_identifier else segment
                key = ".".join([alias, *embedded, leaf])
                self.pipeline.add_match(key, build_condition(term.operator, _coerce_term_value(f, leaf, term)))
                return

            if last:
                raise ValidationError(f"Path {root.name}.{term.path} must end at a scalar field")

            if f.relation.embedded:
                embedded.append(segment)
            else:
                local_prefix = ".".join([alias, *embedded]) + "."
                alias = "_".join([alias, *embedded, segment])
                embedded = []
                self.pipeline.join(alias, self._lookup(f, local_prefix))
            current = self.registry.require(f.target, referrer=f"{current.name}.{segment}").entity


class QueryCompiler:
    """
    Compiles list arguments into aggregation pipelines.

    An empty pipeline means "no filter, sort or pagination": the caller
    runs an unconditional find instead.
    """

    def __init__(self, registry: TypeRegistry, default_limit: int = DEFAULT_LIMIT):
        self.registry = registry
        self.default_limit = default_limit

    def parse_arguments(self, entity_name: str, raw: Optional[dict]) -> ListArguments:
        """
        Validate raw list arguments against an entity.

        Raises:
            ValidationError: Unknown field or malformed term
        """
        entity = self.registry.get(entity_name).entity
        raw = raw or {}
        try:
            filters: dict[str, Any] = {}
            for key, value in raw.items():
                if key in RESERVED_ARGUMENTS:
                    continue
                f = entity.get_field(key)
                if f is None:
                    raise ValidationError(f"{entity_name} has no field '{key}'")
                model = FilterExpression if f.kind in OBJECT_KINDS else FilterTerm
                filters[key] = model.model_validate(value)

            sort = SortExpression.model_validate(raw["sort"]) if raw.get("sort") else None
            pagination = Pagination.model_validate(raw["pagination"]) if raw.get("pagination") else None
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid arguments for {entity_name}: {e}", cause=e)

        return ListArguments(filters=filters, sort=sort, pagination=pagination)

    def compile(self, args: ListArguments | dict, entity_name: str, count: bool = False) -> list[dict]:
        """
        Build the pipeline for a list (or its count when ``count`` is set).
        """
        descriptor: EntityDescriptor = self.registry.get(entity_name)
        if isinstance(args, dict):
            args = self.parse_arguments(entity_name, args)
        if args.is_empty:
            return [{"$count": COUNT_FIELD}] if count else []

        pipeline = _Pipeline()
        builder = _FilterBuilder(self.registry, pipeline)
        for name, term in args.filters.items():
            f = descriptor.entity.get_field(name)
            if f is None:
                raise ValidationError(f"{entity_name} has no field '{name}'")
            builder.visit(f, term)

        stages: list[dict] = list(pipeline.joins)
        if pipeline.match:
            stages.append({"$match": pipeline.match})

        if count:
            stages.append({"$count": COUNT_FIELD})
        else:
            if args.sort is not None and args.sort.terms:
                stages.append({"$sort": self._sort(descriptor.entity, args.sort)})
            stages.extend(self._paginate(args.pagination))

        logger.debug(f"Compiled {'count ' if count else ''}pipeline for {entity_name}: {stages}")
        return stages

    def _sort(self, entity: EntityDef, sort: SortExpression) -> dict[str, int]:
        clause: dict[str, int] = {}
        for term in sort.terms:
            head = term.field.split(".")[0]
            if entity.get_field(head) is None:
                raise ValidationError(f"{entity.name} has no field '{head}' to sort by")
            key = "_id" if term.field == "id" else term.field
            clause[key] = 1 if term.order == SortOrder.ASC else -1
        return clause

    def _paginate(self, pagination: Optional[Pagination]) -> list[dict]:
        # limit counts from the start of the set and is applied before skip
        if pagination is None:
            return [{"$limit": self.default_limit}, {"$skip": 0}]
        skip = pagination.size * (pagination.page - 1)
        return [{"$limit": pagination.size + skip}, {"$skip": skip}]
