"""
Unit tests for the query compiler.

Tests cover:
- Operator mapping and value coercion
- Joins for referenced relations, aliases and multi-hop paths
- Stage order, sort, pagination and count pipelines
- Argument validation
"""

from datetime import datetime

import pytest
from bson import ObjectId

from simfinity.core.errors import ValidationError
from simfinity.runtime.query_compiler import build_condition
from simfinity.core.query_types import Operator


DEFAULT_TAIL = [{"$limit": 100}, {"$skip": 0}]


def unwind(alias):
    return {"$unwind": {"path": f"${alias}", "preserveNullAndEmptyArrays": True}}


class TestOperators:
    """Tests for operator -> condition mapping."""

    @pytest.mark.parametrize("operator,value,expected", [
        (None, 3, 3),
        (Operator.EQ, 3, 3),
        (Operator.LT, 3, {"$lt": 3}),
        (Operator.GT, 3, {"$gt": 3}),
        (Operator.LTE, 3, {"$lte": 3}),
        (Operator.GTE, 3, {"$gte": 3}),
        (Operator.NE, 3, {"$ne": 3}),
        (Operator.IN, [1, 2], {"$in": [1, 2]}),
        (Operator.NIN, [1, 2], {"$nin": [1, 2]}),
    ])
    def test_mapping(self, operator, value, expected):
        assert build_condition(operator, value) == expected

    def test_between_is_inclusive_range(self):
        assert build_condition(Operator.BTW, [1, 5]) == {"$gte": 1, "$lte": 5}

    def test_like_is_unanchored_literal(self):
        assert build_condition(Operator.LIKE, "a.b") == {"$regex": ".*a\\.b.*"}


class TestScalarFilters:
    """Tests for scalar and enum fields."""

    def test_no_arguments_yields_empty_pipeline(self, compiler):
        assert compiler.compile({}, "Order") == []

    def test_equality(self, compiler):
        pipeline = compiler.compile({"number": {"operator": "EQ", "value": "A1"}}, "Order")

        assert pipeline == [{"$match": {"number": "A1"}}, *DEFAULT_TAIL]

    def test_missing_operator_means_equality(self, compiler):
        pipeline = compiler.compile({"state": {"value": "DRAFT"}}, "Order")

        assert pipeline[0] == {"$match": {"state": "DRAFT"}}

    def test_between(self, compiler):
        pipeline = compiler.compile({"number": {"operator": "BTW", "value": ["A1", "A9"]}}, "Order")

        assert pipeline[0] == {"$match": {"number": {"$gte": "A1", "$lte": "A9"}}}

    def test_between_requires_pair(self, compiler):
        with pytest.raises(ValidationError, match="two-element"):
            compiler.compile({"number": {"operator": "BTW", "value": ["A1"]}}, "Order")

    def test_between_without_value_rejected(self, compiler):
        with pytest.raises(ValidationError, match="two-element"):
            compiler.compile({"number": {"operator": "BTW"}}, "Order")

    @pytest.mark.parametrize("operator", ["IN", "NIN"])
    def test_set_operators_require_list(self, compiler, operator):
        with pytest.raises(ValidationError, match=f"{operator} expects a list"):
            compiler.compile({"number": {"operator": operator, "value": "A12"}}, "Order")

    def test_set_operator_without_value_rejected(self, compiler):
        with pytest.raises(ValidationError, match="IN expects a list"):
            compiler.compile({"number": {"operator": "IN"}}, "Order")

    def test_id_addresses_object_id(self, compiler):
        oid = ObjectId()
        pipeline = compiler.compile({"id": {"operator": "IN", "value": [str(oid)]}}, "Order")

        assert pipeline[0] == {"$match": {"_id": {"$in": [oid]}}}

    def test_invalid_id_value_left_alone(self, compiler):
        pipeline = compiler.compile({"id": {"value": "not-an-id"}}, "Order")

        assert pipeline[0] == {"$match": {"_id": "not-an-id"}}

    def test_date_values_coerced(self, compiler):
        pipeline = compiler.compile(
            {"placed_at": {"operator": "GTE", "value": "2024-01-01T00:00:00"}}, "Order"
        )

        assert pipeline[0] == {"$match": {"placed_at": {"$gte": datetime(2024, 1, 1)}}}

    def test_date_range_coerced(self, compiler):
        pipeline = compiler.compile(
            {"placed_at": {"operator": "BTW", "value": ["2024-01-01T00:00:00", "2024-02-01T00:00:00"]}},
            "Order",
        )

        assert pipeline[0] == {
            "$match": {"placed_at": {"$gte": datetime(2024, 1, 1), "$lte": datetime(2024, 2, 1)}}
        }

    def test_unknown_field(self, compiler):
        with pytest.raises(ValidationError, match="no field 'bogus'"):
            compiler.compile({"bogus": {"value": 1}}, "Order")

    def test_relation_field_without_terms_adds_nothing(self, compiler):
        """A relation given {operator, value} validates as an empty term list."""
        pipeline = compiler.compile({"customer": {"value": "Ann"}}, "Order")

        assert pipeline == DEFAULT_TAIL


class TestRelationFilters:
    """Tests for joins and path terms."""

    def test_referenced_object_join(self, compiler):
        pipeline = compiler.compile(
            {"customer": {"terms": [{"path": "name", "operator": "EQ", "value": "Ann"}]}}, "Order"
        )

        assert pipeline == [
            {"$lookup": {"from": "customers", "foreignField": "_id", "localField": "customer_id", "as": "customer"}},
            unwind("customer"),
            {"$match": {"customer.name": "Ann"}},
            *DEFAULT_TAIL,
        ]

    def test_referenced_list_join(self, compiler):
        pipeline = compiler.compile({"orders": {"terms": [{"path": "number", "value": "A1"}]}}, "Customer")

        assert pipeline[0] == {
            "$lookup": {"from": "orders", "foreignField": "customer_id", "localField": "_id", "as": "orders"}
        }
        assert pipeline[1] == unwind("orders")
        assert pipeline[2] == {"$match": {"orders.number": "A1"}}

    def test_embedded_relation_needs_no_join(self, compiler):
        pipeline = compiler.compile({"items": {"terms": [{"path": "product", "value": "pen"}]}}, "Order")

        assert pipeline == [{"$match": {"items.product": "pen"}}, *DEFAULT_TAIL]

    def test_embedded_hop_extends_path(self, compiler):
        pipeline = compiler.compile(
            {"customer": {"terms": [{"path": "address.city", "value": "Paris"}]}}, "Order"
        )

        assert len([s for s in pipeline if "$lookup" in s]) == 1
        assert {"$match": {"customer.address.city": "Paris"}} in pipeline

    def test_referenced_hop_joins_under_accumulated_alias(self, compiler):
        pipeline = compiler.compile(
            {"orders": {"terms": [{"path": "customer.name", "value": "Ann"}]}}, "Customer"
        )

        assert pipeline[:4] == [
            {"$lookup": {"from": "orders", "foreignField": "customer_id", "localField": "_id", "as": "orders"}},
            unwind("orders"),
            {"$lookup": {
                "from": "customers",
                "foreignField": "_id",
                "localField": "orders.customer_id",
                "as": "orders_customer",
            }},
            unwind("orders_customer"),
        ]
        assert pipeline[4] == {"$match": {"orders_customer.name": "Ann"}}

    def test_one_join_per_alias_and_all_terms_apply(self, compiler):
        pipeline = compiler.compile({"customer": {"terms": [
            {"path": "name", "value": "Ann"},
            {"path": "email", "operator": "LIKE", "value": "example"},
        ]}}, "Order")

        assert len([s for s in pipeline if "$lookup" in s]) == 1
        match = next(s["$match"] for s in pipeline if "$match" in s)
        assert match == {"customer.name": "Ann", "customer.email": {"$regex": ".*example.*"}}

    def test_repeated_path_combined_with_and(self, compiler):
        pipeline = compiler.compile({"customer": {"terms": [
            {"path": "name", "operator": "GTE", "value": "A"},
            {"path": "name", "operator": "LT", "value": "C"},
        ]}}, "Order")

        match = next(s["$match"] for s in pipeline if "$match" in s)
        assert match == {"customer.name": {"$gte": "A"}, "$and": [{"customer.name": {"$lt": "C"}}]}

    def test_path_id_addresses_object_id(self, compiler):
        oid = ObjectId()
        pipeline = compiler.compile({"customer": {"terms": [{"path": "id", "value": str(oid)}]}}, "Order")

        assert {"$match": {"customer._id": oid}} in pipeline

    def test_path_set_operator_requires_list(self, compiler):
        with pytest.raises(ValidationError, match="IN expects a list"):
            compiler.compile({"customer": {"terms": [{"path": "name", "operator": "IN", "value": "Ann"}]}}, "Order")

    def test_unknown_path_segment(self, compiler):
        with pytest.raises(ValidationError, match="no field 'bogus'"):
            compiler.compile({"customer": {"terms": [{"path": "bogus", "value": 1}]}}, "Order")

    def test_path_must_end_at_scalar(self, compiler):
        with pytest.raises(ValidationError, match="scalar"):
            compiler.compile({"customer": {"terms": [{"path": "address", "value": 1}]}}, "Order")


class TestSortAndPagination:
    """Tests for sort, pagination and count pipelines."""

    def test_pagination_skip_and_cumulative_limit(self, compiler):
        pipeline = compiler.compile({"pagination": {"page": 2, "size": 10}}, "Order")

        assert pipeline == [{"$limit": 20}, {"$skip": 10}]

    def test_first_page(self, compiler):
        assert compiler.compile({"pagination": {"page": 1, "size": 5}}, "Order") == [
            {"$limit": 5}, {"$skip": 0},
        ]

    def test_sort_before_pagination(self, compiler):
        pipeline = compiler.compile({
            "number": {"value": "A1"},
            "sort": {"terms": [{"field": "number", "order": "DESC"}, {"field": "id", "order": "ASC"}]},
        }, "Order")

        assert pipeline == [
            {"$match": {"number": "A1"}},
            {"$sort": {"number": -1, "_id": 1}},
            *DEFAULT_TAIL,
        ]

    def test_sort_unknown_field(self, compiler):
        with pytest.raises(ValidationError, match="sort"):
            compiler.compile({"sort": {"terms": [{"field": "bogus", "order": "ASC"}]}}, "Order")

    def test_count_omits_sort_and_pagination(self, compiler):
        args = {
            "customer": {"terms": [{"path": "name", "value": "Ann"}]},
            "sort": {"terms": [{"field": "number", "order": "ASC"}]},
            "pagination": {"page": 3, "size": 10, "count": True},
        }
        pipeline = compiler.compile(args, "Order", count=True)

        assert [next(iter(stage)) for stage in pipeline] == ["$lookup", "$unwind", "$match", "$count"]
        assert pipeline[-1] == {"$count": "size"}

    def test_invalid_pagination(self, compiler):
        with pytest.raises(ValidationError):
            compiler.compile({"pagination": {"page": 0, "size": 10}}, "Order")

    def test_default_limit_configurable(self, registry):
        from simfinity.runtime.query_compiler import QueryCompiler

        compiler = QueryCompiler(registry, default_limit=25)
        pipeline = compiler.compile({"number": {"value": "A1"}}, "Order")

        assert pipeline[-2:] == [{"$limit": 25}, {"$skip": 0}]

    def test_parsed_arguments_accepted(self, compiler):
        args = compiler.parse_arguments("Order", {"number": {"value": "A1"}})

        assert compiler.compile(args, "Order")[0] == {"$match": {"number": "A1"}}
