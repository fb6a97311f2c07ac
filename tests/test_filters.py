"""Tests for the contact filter evaluator.

Covers: parsing and validation, string/number/date/tag operators,
missing-field handling, AND/OR reasons, free-text search.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from dripline.errors import ValidationError
from dripline.workflow.filters import (
    FilterCondition,
    FilterOperator,
    FilterTree,
    LogicalOperator,
    evaluate,
    matches_search,
    resolve_path,
)
from dripline.workflow.models import Contact


def _record(**fields) -> dict:
    fields.setdefault("created_at", datetime(2026, 3, 2, 15, 0, tzinfo=UTC))
    return Contact(id="c1", organization_id="org-1", **fields).to_record()


def _tree(*conditions, logical: str = "AND") -> FilterTree:
    return FilterTree.from_dict({"logicalOperator": logical, "conditions": list(conditions)})


def _passes(condition: dict, **fields) -> bool:
    return evaluate(_tree(condition), _record(**fields)).passed


# ===================================================================
# 1. Parsing
# ===================================================================


class TestParsing:
    """Trees are validated against the field mapping when parsed."""

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown filter field"):
            FilterCondition.from_dict({"field": "favouriteColour", "operator": "equals"})

    def test_unknown_operator_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unknown filter operator"):
            FilterCondition.from_dict({"field": "email", "operator": "sortOf", "value": "x"})

    def test_operator_must_fit_field_type(self) -> None:
        with pytest.raises(ValidationError, match="not valid for string field"):
            FilterCondition.from_dict({"field": "email", "operator": "greaterThan", "value": 3})

    def test_value_required(self) -> None:
        with pytest.raises(ValidationError, match="requires a value"):
            FilterCondition.from_dict({"field": "email", "operator": "contains"})

    def test_no_value_operators_drop_value(self) -> None:
        condition = FilterCondition.from_dict(
            {"field": "email", "operator": "isEmpty", "value": "ignored"}
        )
        assert condition.value is None

    def test_short_alias_for_none_of_the_tags(self) -> None:
        condition = FilterCondition.from_dict(
            {"field": "tags", "operator": "hasNoneTags", "value": ["vip"]}
        )
        assert condition.operator == FilterOperator.HAS_NONE_OF_THE_TAGS

    def test_tags_accept_comma_separated_string(self) -> None:
        condition = FilterCondition.from_dict(
            {"field": "tags", "operator": "hasAnyTags", "value": "vip, partner"}
        )
        assert condition.value == ("vip", "partner")

    def test_between_requires_two_dates(self) -> None:
        with pytest.raises(ValidationError, match="between"):
            FilterCondition.from_dict(
                {"field": "createdAt", "operator": "between", "value": ["2026-03-01"]}
            )

    def test_invalid_date_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid date"):
            FilterCondition.from_dict(
                {"field": "createdAt", "operator": "isAfter", "value": "next tuesday"}
            )

    def test_logical_operator_defaults_to_and(self) -> None:
        tree = FilterTree.from_dict({"conditions": []})
        assert tree.logical_operator == LogicalOperator.AND

    def test_snake_case_logical_operator_accepted(self) -> None:
        tree = FilterTree.from_dict({"logical_operator": "or", "conditions": []})
        assert tree.logical_operator == LogicalOperator.OR

    def test_to_dict_parses_back_to_same_tree(self) -> None:
        tree = _tree(
            {"field": "email", "operator": "contains", "value": "acme"},
            {"field": "tags", "operator": "hasAllTags", "value": ["a", "b"]},
            logical="OR",
        )
        assert FilterTree.from_dict(tree.to_dict()) == tree


# ===================================================================
# 2. String and select operators
# ===================================================================


class TestStringOperators:
    def test_equals_is_exact(self) -> None:
        assert _passes(
            {"field": "firstName", "operator": "equals", "value": "Ada"}, first_name="Ada"
        )
        assert not _passes(
            {"field": "firstName", "operator": "equals", "value": "ada"}, first_name="Ada"
        )

    def test_contains_is_case_insensitive(self) -> None:
        condition = {"field": "email", "operator": "contains", "value": "ACME"}
        assert _passes(condition, email="ada@acme.io")

    def test_not_contains(self) -> None:
        condition = {"field": "email", "operator": "notContains", "value": "acme"}
        assert _passes(condition, email="ada@example.com")
        assert not _passes(condition, email="ada@acme.io")

    def test_starts_and_ends_with(self) -> None:
        assert _passes(
            {"field": "title", "operator": "startsWith", "value": "vp"}, title="VP Sales"
        )
        assert _passes(
            {"field": "title", "operator": "endsWith", "value": "SALES"}, title="VP Sales"
        )

    def test_mapped_field_reads_company_name(self) -> None:
        condition = {"field": "currentCompanyName", "operator": "equals", "value": "Acme"}
        assert _passes(condition, company_name="Acme")

    def test_select_field_inside_attributes(self) -> None:
        condition = {"field": "status", "operator": "equals", "value": "customer"}
        assert _passes(condition, attributes={"status": "customer"})


# ===================================================================
# 3. Missing fields
# ===================================================================


class TestMissingFields:
    """Positive operators fail on a missing field; negated ones pass."""

    @pytest.mark.parametrize("operator", ["equals", "contains", "startsWith", "endsWith"])
    def test_positive_operators_fail(self, operator: str) -> None:
        assert not _passes({"field": "email", "operator": operator, "value": "x"})

    @pytest.mark.parametrize("operator", ["notEquals", "notContains"])
    def test_negated_operators_pass(self, operator: str) -> None:
        assert _passes({"field": "email", "operator": operator, "value": "x"})

    def test_is_empty_passes_and_is_not_empty_fails(self) -> None:
        assert _passes({"field": "email", "operator": "isEmpty"})
        assert not _passes({"field": "email", "operator": "isNotEmpty"})

    def test_empty_string_counts_as_empty(self) -> None:
        assert _passes({"field": "email", "operator": "isEmpty"}, email="")

    def test_missing_number_fails_comparisons(self) -> None:
        assert not _passes({"field": "leadScore", "operator": "greaterThan", "value": 0})
        assert _passes({"field": "leadScore", "operator": "notEquals", "value": 10})

    def test_missing_date_fails_comparisons(self) -> None:
        condition = {"field": "lastActivityAt", "operator": "isBefore", "value": "2030-01-01"}
        assert not _passes(condition)

    def test_missing_tags(self) -> None:
        assert _passes({"field": "tags", "operator": "hasNoTags"})
        assert _passes({"field": "tags", "operator": "hasNoneOfTheTags", "value": ["vip"]})
        assert not _passes({"field": "tags", "operator": "hasAnyTags", "value": ["vip"]})


# ===================================================================
# 4. Numbers, dates and tags
# ===================================================================


class TestNumberOperators:
    def test_greater_and_less_than(self) -> None:
        attrs = {"lead_score": 75}
        assert _passes(
            {"field": "leadScore", "operator": "greaterThan", "value": 50}, attributes=attrs
        )
        assert not _passes(
            {"field": "leadScore", "operator": "lessThan", "value": 50}, attributes=attrs
        )

    def test_numeric_strings_compare_as_numbers(self) -> None:
        condition = {"field": "leadScore", "operator": "equals", "value": "75"}
        assert _passes(condition, attributes={"lead_score": "75.0"})


class TestDateOperators:
    """Dates compare at day granularity in UTC; the record was created 2026-03-02."""

    def test_equals_means_on_that_day(self) -> None:
        assert _passes({"field": "createdAt", "operator": "equals", "value": "2026-03-02"})

    def test_is_after_means_from_the_next_day(self) -> None:
        assert _passes({"field": "createdAt", "operator": "isAfter", "value": "2026-03-01"})
        assert not _passes({"field": "createdAt", "operator": "isAfter", "value": "2026-03-02"})

    def test_is_before_excludes_the_day(self) -> None:
        assert not _passes({"field": "createdAt", "operator": "isBefore", "value": "2026-03-02"})
        assert _passes({"field": "createdAt", "operator": "isBefore", "value": "2026-03-03"})

    def test_between_is_inclusive(self) -> None:
        condition = {
            "field": "createdAt",
            "operator": "between",
            "value": ["2026-03-02", "2026-03-02"],
        }
        assert _passes(condition)

    def test_timestamp_value_truncated_to_utc_day(self) -> None:
        condition = {
            "field": "createdAt",
            "operator": "equals",
            "value": "2026-03-02T23:30:00-05:00",
        }
        # 23:30 EST is already 2026-03-03 in UTC
        assert not _passes(condition)


class TestTagOperators:
    def test_has_all_tags_case_insensitive(self) -> None:
        condition = {"field": "tags", "operator": "hasAllTags", "value": ["VIP", "partner"]}
        assert _passes(condition, tags=["vip", "Partner", "beta"])
        assert not _passes(condition, tags=["vip"])

    def test_has_any_tags(self) -> None:
        condition = {"field": "tags", "operator": "hasAnyTags", "value": ["vip", "beta"]}
        assert _passes(condition, tags=["beta"])

    def test_has_none_of_the_tags(self) -> None:
        condition = {"field": "tags", "operator": "hasNoneOfTheTags", "value": ["churned"]}
        assert _passes(condition, tags=["vip"])
        assert not _passes(condition, tags=["Churned"])

    def test_has_no_tags(self) -> None:
        assert _passes({"field": "tags", "operator": "hasNoTags"}, tags=[])
        assert not _passes({"field": "tags", "operator": "hasNoTags"}, tags=["vip"])


# ===================================================================
# 5. Combining conditions
# ===================================================================


class TestEvaluate:
    def test_none_and_empty_trees_pass(self) -> None:
        assert evaluate(None, _record()).passed
        result = evaluate(FilterTree(), _record())
        assert result.passed
        assert result.reason == "No conditions to evaluate"

    def test_and_requires_all(self) -> None:
        tree = _tree(
            {"field": "email", "operator": "contains", "value": "acme"},
            {"field": "country", "operator": "equals", "value": "NZ"},
        )
        assert evaluate(tree, _record(email="a@acme.io", country="NZ")).passed
        result = evaluate(tree, _record(email="a@acme.io", country="AU"))
        assert not result.passed
        assert result.reason == 'Failed filters: country equals "NZ"'

    def test_and_reason_lists_every_failure(self) -> None:
        tree = _tree(
            {"field": "email", "operator": "contains", "value": "acme"},
            {"field": "country", "operator": "equals", "value": "NZ"},
        )
        result = evaluate(tree, _record(email="a@example.com"))
        assert result.reason == 'Failed filters: email contains "acme" AND country equals "NZ"'

    def test_and_success_reason(self) -> None:
        tree = _tree({"field": "email", "operator": "isNotEmpty"})
        assert evaluate(tree, _record(email="a@b.c")).reason == "All 1 conditions passed"

    def test_or_requires_one(self) -> None:
        tree = _tree(
            {"field": "city", "operator": "equals", "value": "Auckland"},
            {"field": "city", "operator": "equals", "value": "Wellington"},
            logical="OR",
        )
        result = evaluate(tree, _record(city="Wellington"))
        assert result.passed
        assert result.reason == 'Matched: city equals "Wellington"'

        result = evaluate(tree, _record(city="Dunedin"))
        assert not result.passed
        assert " OR " in result.reason

    def test_deterministic_and_side_effect_free(self) -> None:
        tree = _tree({"field": "tags", "operator": "hasAnyTags", "value": ["vip"]})
        record = _record(tags=["vip"], attributes={"nested": {"x": 1}})
        snapshot = repr(record)
        first = evaluate(tree, record)
        second = evaluate(tree, record)
        assert first == second
        assert repr(record) == snapshot


class TestSearch:
    def test_blank_term_matches_everything(self) -> None:
        assert matches_search(_record(), None)
        assert matches_search(_record(), "   ")

    def test_matches_any_search_field(self) -> None:
        record = _record(first_name="Ada", company_name="Analytical Engines")
        assert matches_search(record, "ada")
        assert matches_search(record, "ENGINES")
        assert not matches_search(record, "babbage")

    def test_city_is_not_searched(self) -> None:
        assert not matches_search(_record(city="London"), "london")


def test_resolve_path_handles_missing_parts() -> None:
    record = {"attributes": {"a": {"b": 1}}}
    assert resolve_path(record, "attributes.a.b") == 1
    assert resolve_path(record, "attributes.a.c") is None
    assert resolve_path(record, "attributes.a.b.c") is None
