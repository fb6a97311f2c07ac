"""Contact filter trees and their evaluator.

Filter fields are resolved through ``FIELD_MAPPINGS`` when a tree is parsed,
so an unknown field or an operator that does not apply to a field's type is
rejected up front rather than silently failing at evaluation time.

Missing-field semantics:
    Positive operators (equals, contains, hasAnyTags, ...) fail on a missing
    field. Negated operators (notEquals, notContains, hasNoneOfTheTags) and
    the emptiness checks isEmpty / hasNoTags pass on it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from dripline.errors import ValidationError


class FilterOperator(str, Enum):
    """Comparison operators supported in filter conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    IS_EMPTY = "isEmpty"
    IS_NOT_EMPTY = "isNotEmpty"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    IS_AFTER = "isAfter"
    IS_BEFORE = "isBefore"
    BETWEEN = "between"
    HAS_ALL_TAGS = "hasAllTags"
    HAS_ANY_TAGS = "hasAnyTags"
    HAS_NONE_OF_THE_TAGS = "hasNoneOfTheTags"
    HAS_NO_TAGS = "hasNoTags"


# Older clients send the short spelling
_OPERATOR_ALIASES = {"hasNoneTags": FilterOperator.HAS_NONE_OF_THE_TAGS}


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class FieldType(str, Enum):
    STRING = "string"
    SELECT = "select"
    NUMBER = "number"
    DATE = "date"
    TAGS = "tags"


@dataclass(frozen=True)
class FieldSpec:
    """Where a filterable field lives on a contact record, and its type."""

    path: str
    type: FieldType


FIELD_MAPPINGS: dict[str, FieldSpec] = {
    "firstName": FieldSpec("first_name", FieldType.STRING),
    "lastName": FieldSpec("last_name", FieldType.STRING),
    "email": FieldSpec("email", FieldType.STRING),
    "title": FieldSpec("title", FieldType.STRING),
    "currentCompanyName": FieldSpec("company_name", FieldType.STRING),
    "leadStatus": FieldSpec("lead_status", FieldType.SELECT),
    "status": FieldSpec("attributes.status", FieldType.SELECT),
    "leadScore": FieldSpec("attributes.lead_score", FieldType.NUMBER),
    "city": FieldSpec("city", FieldType.STRING),
    "state": FieldSpec("state", FieldType.STRING),
    "country": FieldSpec("country", FieldType.STRING),
    "createdAt": FieldSpec("created_at", FieldType.DATE),
    "updatedAt": FieldSpec("updated_at", FieldType.DATE),
    "lastActivityAt": FieldSpec("last_activity_at", FieldType.DATE),
    "tags": FieldSpec("tags", FieldType.TAGS),
}

_EMPTINESS = {FilterOperator.IS_EMPTY, FilterOperator.IS_NOT_EMPTY}

OPERATORS_BY_TYPE: dict[FieldType, frozenset[FilterOperator]] = {
    FieldType.STRING: frozenset(
        {
            FilterOperator.EQUALS,
            FilterOperator.NOT_EQUALS,
            FilterOperator.CONTAINS,
            FilterOperator.NOT_CONTAINS,
            FilterOperator.STARTS_WITH,
            FilterOperator.ENDS_WITH,
            *_EMPTINESS,
        }
    ),
    FieldType.SELECT: frozenset(
        {
            FilterOperator.EQUALS,
            FilterOperator.NOT_EQUALS,
            FilterOperator.CONTAINS,
            FilterOperator.NOT_CONTAINS,
            *_EMPTINESS,
        }
    ),
    FieldType.NUMBER: frozenset(
        {
            FilterOperator.EQUALS,
            FilterOperator.NOT_EQUALS,
            FilterOperator.GREATER_THAN,
            FilterOperator.LESS_THAN,
            *_EMPTINESS,
        }
    ),
    FieldType.DATE: frozenset(
        {
            FilterOperator.EQUALS,
            FilterOperator.IS_AFTER,
            FilterOperator.IS_BEFORE,
            FilterOperator.BETWEEN,
            *_EMPTINESS,
        }
    ),
    FieldType.TAGS: frozenset(
        {
            FilterOperator.HAS_ALL_TAGS,
            FilterOperator.HAS_ANY_TAGS,
            FilterOperator.HAS_NONE_OF_THE_TAGS,
            FilterOperator.HAS_NO_TAGS,
            *_EMPTINESS,
        }
    ),
}

# Fields consulted by free-text search
SEARCH_FIELDS = ("first_name", "last_name", "email", "lead_status", "title", "company_name")

_NO_VALUE_OPERATORS = {
    FilterOperator.IS_EMPTY,
    FilterOperator.IS_NOT_EMPTY,
    FilterOperator.HAS_NO_TAGS,
}


def parse_operator(value: str) -> FilterOperator:
    if value in _OPERATOR_ALIASES:
        return _OPERATOR_ALIASES[value]
    try:
        return FilterOperator(value)
    except ValueError:
        raise ValidationError(f"Unknown filter operator '{value}'")


def _parse_day(value: Any) -> date:
    if isinstance(value, datetime):
        return value.astimezone(UTC).date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD")
    return parsed.astimezone(UTC).date() if parsed.tzinfo else parsed.date()


def _normalize_tags(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    return [str(t) for t in value]


@dataclass(frozen=True)
class FilterCondition:
    """A single ``field operator value`` comparison."""

    field: str
    operator: FilterOperator
    value: Any = None

    @property
    def spec(self) -> FieldSpec:
        return FIELD_MAPPINGS[self.field]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilterCondition:
        if not isinstance(data, Mapping):
            raise ValidationError("Filter condition must be a mapping")

        field_name = data.get("field")
        if field_name not in FIELD_MAPPINGS:
            raise ValidationError(f"Unknown filter field '{field_name}'")
        spec = FIELD_MAPPINGS[field_name]

        operator = parse_operator(str(data.get("operator", "")))
        if operator not in OPERATORS_BY_TYPE[spec.type]:
            raise ValidationError(
                f"Operator '{operator.value}' is not valid for "
                f"{spec.type.value} field '{field_name}'"
            )

        value = None
        if operator not in _NO_VALUE_OPERATORS:
            value = cls._coerce_value(field_name, spec, operator, data.get("value"))
        return cls(field=field_name, operator=operator, value=value)

    @staticmethod
    def _coerce_value(field_name: str, spec: FieldSpec, operator: FilterOperator, value: Any):
        if value is None or value == "" or value == []:
            raise ValidationError(f"Filter on '{field_name}' requires a value")

        if spec.type == FieldType.TAGS:
            tags = _normalize_tags(value)
            if not tags:
                raise ValidationError(f"Filter on '{field_name}' requires at least one tag")
            return tuple(tags)

        if spec.type == FieldType.DATE:
            if operator == FilterOperator.BETWEEN:
                if not isinstance(value, list | tuple) or len(value) != 2:
                    raise ValidationError(f"'between' on '{field_name}' takes [start, end]")
                return (_parse_day(value[0]).isoformat(), _parse_day(value[1]).isoformat())
            return _parse_day(value).isoformat()

        if spec.type == FieldType.NUMBER:
            try:
                return float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Filter on '{field_name}' requires a number")

        return str(value)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"field": self.field, "operator": self.operator.value}
        if self.value is not None:
            data["value"] = list(self.value) if isinstance(self.value, tuple) else self.value
        return data

    def describe(self) -> str:
        if self.operator in _NO_VALUE_OPERATORS:
            return f"{self.field} {self.operator.value}"
        value = ", ".join(self.value) if isinstance(self.value, tuple) else self.value
        return f'{self.field} {self.operator.value} "{value}"'


@dataclass(frozen=True)
class FilterTree:
    """A flat group of conditions joined by AND or OR."""

    logical_operator: LogicalOperator = LogicalOperator.AND
    conditions: tuple[FilterCondition, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FilterTree:
        if not isinstance(data, Mapping):
            raise ValidationError("Filter must be a mapping")
        raw_op = data.get("logicalOperator", data.get("logical_operator", "AND"))
        try:
            logical = LogicalOperator(str(raw_op).upper())
        except ValueError:
            raise ValidationError(f"Unknown logical operator '{raw_op}'")
        raw_conditions = data.get("conditions") or []
        if not isinstance(raw_conditions, list):
            raise ValidationError("Filter conditions must be a list")
        return cls(
            logical_operator=logical,
            conditions=tuple(FilterCondition.from_dict(c) for c in raw_conditions),
        )

    def to_dict(self) -> dict:
        return {
            "logicalOperator": self.logical_operator.value,
            "conditions": [c.to_dict() for c in self.conditions],
        }


@dataclass(frozen=True)
class FilterResult:
    passed: bool
    reason: str = ""


def resolve_path(record: Mapping[str, Any], path: str) -> Any:
    """Read a dot-separated path from nested mappings; missing parts yield None."""
    node: Any = record
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, list | tuple | set | dict):
        return len(value) == 0
    return False


def _as_day(value: Any) -> date | None:
    try:
        return _parse_day(value)
    except ValidationError:
        return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(condition: FilterCondition, record: Mapping[str, Any]) -> bool:
    """Evaluate one condition against a contact record."""
    op = condition.operator
    spec = condition.spec
    actual = resolve_path(record, spec.path)

    if op == FilterOperator.IS_EMPTY:
        return _is_empty(actual)
    if op == FilterOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)

    if spec.type == FieldType.TAGS:
        tags = {t.casefold() for t in _normalize_tags(actual)}
        wanted = {t.casefold() for t in (condition.value or ())}
        if op == FilterOperator.HAS_NO_TAGS:
            return not tags
        if op == FilterOperator.HAS_ALL_TAGS:
            return wanted <= tags
        if op == FilterOperator.HAS_ANY_TAGS:
            return bool(wanted & tags)
        if op == FilterOperator.HAS_NONE_OF_THE_TAGS:
            return not (wanted & tags)
        return False

    if actual is None:
        return op in (FilterOperator.NOT_EQUALS, FilterOperator.NOT_CONTAINS)

    if spec.type == FieldType.DATE:
        day = _as_day(actual)
        if day is None:
            return False
        if op == FilterOperator.BETWEEN:
            start, end = (date.fromisoformat(v) for v in condition.value)
            return start <= day <= end
        target = date.fromisoformat(condition.value)
        if op == FilterOperator.EQUALS:
            return day == target
        if op == FilterOperator.IS_AFTER:
            return day > target
        if op == FilterOperator.IS_BEFORE:
            return day < target
        return False

    if spec.type == FieldType.NUMBER:
        number = _as_number(actual)
        if op == FilterOperator.NOT_EQUALS:
            return number != condition.value
        if number is None:
            return False
        if op == FilterOperator.EQUALS:
            return number == condition.value
        if op == FilterOperator.GREATER_THAN:
            return number > condition.value
        if op == FilterOperator.LESS_THAN:
            return number < condition.value
        return False

    text = str(actual)
    expected = str(condition.value)
    if op == FilterOperator.EQUALS:
        return text == expected
    if op == FilterOperator.NOT_EQUALS:
        return text != expected
    if op == FilterOperator.CONTAINS:
        return expected.casefold() in text.casefold()
    if op == FilterOperator.NOT_CONTAINS:
        return expected.casefold() not in text.casefold()
    if op == FilterOperator.STARTS_WITH:
        return text.casefold().startswith(expected.casefold())
    if op == FilterOperator.ENDS_WITH:
        return text.casefold().endswith(expected.casefold())
    return False


def evaluate(tree: FilterTree | None, record: Mapping[str, Any]) -> FilterResult:
    """Evaluate a filter tree against a contact record.

    Args:
        tree: Filter to apply; ``None`` or an empty tree always passes
        record: Contact record, as produced by ``Contact.to_record``

    Returns:
        FilterResult with a human-readable reason
    """
    if tree is None or not tree.conditions:
        return FilterResult(passed=True, reason="No conditions to evaluate")

    results = [(c, evaluate_condition(c, record)) for c in tree.conditions]

    if tree.logical_operator == LogicalOperator.AND:
        failed = [c.describe() for c, ok in results if not ok]
        if failed:
            return FilterResult(passed=False, reason=f"Failed filters: {' AND '.join(failed)}")
        return FilterResult(passed=True, reason=f"All {len(results)} conditions passed")

    matched = [c.describe() for c, ok in results if ok]
    if matched:
        return FilterResult(passed=True, reason=f"Matched: {matched[0]}")
    failed = [c.describe() for c, _ in results]
    return FilterResult(passed=False, reason=f"Failed filters: {' OR '.join(failed)}")


def matches_search(record: Mapping[str, Any], term: str | None) -> bool:
    """Case-insensitive substring match over the contact's searchable fields."""
    if not term or not term.strip():
        return True
    needle = term.strip().casefold()
    for path in SEARCH_FIELDS:
        value = resolve_path(record, path)
        if value is not None and needle in str(value).casefold():
            return True
    return False
