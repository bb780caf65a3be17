"""Local (client-mode) query pipeline.

Applies search, then filters, then sort to an in-memory list of
entities.  Pagination is a separate step (:func:`paginate`) so callers
that need the unpaginated count can stop after :func:`process`.

The operator semantics here are the reference behavior that the remote
translation (:mod:`reflex_collection_view.translator`) and the polars
data source (:mod:`reflex_collection_view.polars_utils`) reproduce.
"""

import logging
import math
import time
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from functools import cmp_to_key
from typing import Any, Callable

from reflex_collection_view.models import (
    ColumnDef,
    FilterOperator,
    FilterPredicate,
    SortSpec,
    visible_columns,
)
from reflex_collection_view.paths import resolve_path

logger = logging.getLogger(__name__)

_SEQUENCE_TYPES = (list, tuple, set, frozenset)


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def stringify(value: Any) -> str:
    """Render a raw field value as text for the string operators.

    ``None`` becomes ``""``, booleans become ``"true"``/``"false"``,
    integral floats drop their ``.0`` and sequences are comma-joined.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(v) for v in value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def coerce_number(value: Any) -> float:
    """Coerce *value* to a float, returning NaN when it is not numeric.

    NaN makes every ordered comparison false, which is how a row with a
    missing or non-numeric value drops out of a numeric filter.
    """
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return math.nan
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion.

    Booleans only equal booleans and numbers never equal strings, so
    ``strict_equals(1, True)`` and ``strict_equals("1", 1)`` are false.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    left_num = isinstance(left, (int, float))
    right_num = isinstance(right, (int, float))
    if left_num != right_num:
        return False
    return bool(left == right)


def format_cell_value(value: Any, column: ColumnDef, entity: Any) -> str:
    """Return the display text of a cell, as the rendering layer shows it."""
    if column.formatter is not None:
        return stringify(column.formatter(value, entity))
    if column.type == "boolean":
        return "Yes" if value else "No"
    if value is None:
        return ""
    if column.type == "number" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"{value:,}"
    if column.type == "date" and isinstance(value, datetime):
        return value.date().isoformat()
    return stringify(value)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def _top_level_values(entity: Any) -> list[Any]:
    if isinstance(entity, Mapping):
        return list(entity.values())
    return list(getattr(entity, "__dict__", {}).values())


def search_entities(
    entities: Sequence[Any],
    search: str,
    columns: Sequence[ColumnDef] = (),
) -> list[Any]:
    """Keep entities whose formatted value in any visible column contains *search*.

    Matching is case-insensitive.  A blank search keeps everything.  When
    no columns are configured the top-level field values are searched.
    """
    if not search or not search.strip():
        return list(entities)

    needle = search.lower()
    cols = visible_columns(columns)
    result: list[Any] = []
    for entity in entities:
        if cols:
            texts = (format_cell_value(resolve_path(entity, c.key), c, entity) for c in cols)
        else:
            texts = (stringify(v) for v in _top_level_values(entity))
        if any(needle in text.lower() for text in texts):
            result.append(entity)
    return result


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------

def _text_op(test: Callable[[str, str], bool]) -> Callable[[Any, Any], bool]:
    def evaluate(value: Any, target: Any) -> bool:
        if target is None:
            return False
        return test(stringify(value).lower(), stringify(target).lower())
    return evaluate


def _between(value: Any, target: Any) -> bool:
    if not isinstance(target, (list, tuple)) or len(target) != 2:
        return False
    number = coerce_number(value)
    return coerce_number(target[0]) <= number <= coerce_number(target[1])


def _member(value: Any, target: Any) -> bool:
    return any(strict_equals(value, candidate) for candidate in target)


_PREDICATES: dict[FilterOperator, Callable[[Any, Any], bool]] = {
    FilterOperator.EQUALS: strict_equals,
    FilterOperator.NOT_EQUALS: lambda v, t: not strict_equals(v, t),
    FilterOperator.CONTAINS: _text_op(lambda v, t: t in v),
    FilterOperator.NOT_CONTAINS: _text_op(lambda v, t: t not in v),
    FilterOperator.STARTS_WITH: _text_op(lambda v, t: v.startswith(t)),
    FilterOperator.ENDS_WITH: _text_op(lambda v, t: v.endswith(t)),
    FilterOperator.GREATER_THAN: lambda v, t: coerce_number(v) > coerce_number(t),
    FilterOperator.GREATER_THAN_OR_EQUAL: lambda v, t: coerce_number(v) >= coerce_number(t),
    FilterOperator.LESS_THAN: lambda v, t: coerce_number(v) < coerce_number(t),
    FilterOperator.LESS_THAN_OR_EQUAL: lambda v, t: coerce_number(v) <= coerce_number(t),
    FilterOperator.BETWEEN: _between,
    FilterOperator.IN: lambda v, t: isinstance(t, _SEQUENCE_TYPES) and _member(v, t),
    FilterOperator.NOT_IN: lambda v, t: isinstance(t, _SEQUENCE_TYPES) and not _member(v, t),
    FilterOperator.IS_NULL: lambda v, _t: v is None,
    FilterOperator.IS_NOT_NULL: lambda v, _t: v is not None,
}


def evaluate_predicate(entity: Any, predicate: FilterPredicate) -> bool:
    """Evaluate one predicate against one entity.

    Unknown operators pass (fail-open) so a bad config never hides all
    data.  Malformed values for a known operator fail (fail-closed) for
    that row without raising.
    """
    operator = predicate.known_operator
    if operator is None:
        return True
    value = resolve_path(entity, predicate.field)
    return _PREDICATES[operator](value, predicate.value)


def filter_entities(
    entities: Sequence[Any],
    filters: Sequence[FilterPredicate],
) -> list[Any]:
    """Keep entities matching every predicate (logical AND)."""
    if not filters:
        return list(entities)
    return [e for e in entities if all(evaluate_predicate(e, p) for p in filters)]


# ---------------------------------------------------------------------------
# Sort
# ---------------------------------------------------------------------------

def compare_values(left: Any, right: Any) -> int:
    """Ascending three-way comparison of two non-null values.

    Values that Python cannot order against each other (``"a"`` vs ``1``)
    are compared by their text form.
    """
    try:
        if left < right:
            return -1
        if left > right:
            return 1
        return 0
    except TypeError:
        left_text, right_text = stringify(left), stringify(right)
        return (left_text > right_text) - (left_text < right_text)


def sort_entities(entities: Sequence[Any], sort: SortSpec | None) -> list[Any]:
    """Stable sort on a single field.

    ``None`` (or a missing field) always sorts last, whatever the
    direction.  ``desc`` negates the ascending comparison result.
    """
    if sort is None or not sort.field:
        return list(entities)

    sign = -1 if sort.direction == "desc" else 1
    field_name = sort.field

    def comparator(a: Any, b: Any) -> int:
        a_value = resolve_path(a, field_name)
        b_value = resolve_path(b, field_name)
        if a_value is None and b_value is None:
            return 0
        if a_value is None:
            return 1
        if b_value is None:
            return -1
        return sign * compare_values(a_value, b_value)

    return sorted(entities, key=cmp_to_key(comparator))


# ---------------------------------------------------------------------------
# Pipeline + pagination
# ---------------------------------------------------------------------------

def process(
    entities: Sequence[Any],
    search: str = "",
    filters: Sequence[FilterPredicate] = (),
    sort: SortSpec | None = None,
    columns: Sequence[ColumnDef] = (),
) -> list[Any]:
    """Run search -> filter -> sort over *entities* (no pagination)."""
    t0 = time.perf_counter()
    result = search_entities(entities, search, columns)
    result = filter_entities(result, filters)
    result = sort_entities(result, sort)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    logger.debug(
        "local pipeline: %d -> %d rows, %d filter(s), sort=%s, elapsed=%.1fms",
        len(entities), len(result), len(filters), sort, elapsed_ms,
    )
    return result


def paginate(entities: Sequence[Any], page: int, page_size: int) -> list[Any]:
    """Return the 1-based *page* of *entities*; empty when out of range."""
    if page_size <= 0:
        return []
    start = (max(page, 1) - 1) * page_size
    return list(entities[start:start + page_size])


def total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return math.ceil(total / page_size)
