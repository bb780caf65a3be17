"""Backend query translation for server-mode collections.

Turns the query primitives into the flat parameter map a remote list
endpoint accepts (Django REST Framework lookup conventions), and
normalizes whatever that endpoint returns into a :class:`ListResponse`.

The endpoint contract::

    GET /items/?page=2&page_size=25&ordering=-created&search=amy
        &role=admin&age__gte=18&age__lte=30&name__icontains=li

returns either ``{"data": [...], "meta": {"total": 42}}`` or the legacy
``{"results": [...], "count": 42, "next": ..., "previous": ...}``.
"""

import logging
import math
from collections.abc import Sequence
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from reflex_collection_view.models import (
    FilterOperator,
    FilterPredicate,
    ListResponse,
    PaginationWindow,
    SortSpec,
)
from reflex_collection_view.pipeline import coerce_number, stringify

logger = logging.getLogger(__name__)

PAGE_PARAM: str = "page"
PAGE_SIZE_PARAM: str = "page_size"
ORDERING_PARAM: str = "ordering"
SEARCH_PARAM: str = "search"
_DEFAULT_EXCLUDE_PREFIX: str = "exclude__"

# Lookup suffix appended to the field name for each positive operator.
OPERATOR_SUFFIXES: dict[FilterOperator, str] = {
    FilterOperator.EQUALS: "",
    FilterOperator.CONTAINS: "__icontains",
    FilterOperator.STARTS_WITH: "__istartswith",
    FilterOperator.ENDS_WITH: "__iendswith",
    FilterOperator.GREATER_THAN: "__gt",
    FilterOperator.GREATER_THAN_OR_EQUAL: "__gte",
    FilterOperator.LESS_THAN: "__lt",
    FilterOperator.LESS_THAN_OR_EQUAL: "__lte",
    FilterOperator.IN: "__in",
}

# Negated operators are expressed as the exclusion of their positive twin.
NEGATED_COUNTERPARTS: dict[FilterOperator, FilterOperator] = {
    FilterOperator.NOT_EQUALS: FilterOperator.EQUALS,
    FilterOperator.NOT_IN: FilterOperator.IN,
    FilterOperator.NOT_CONTAINS: FilterOperator.CONTAINS,
}

_TEXT_OPERATORS: frozenset[FilterOperator] = frozenset({
    FilterOperator.CONTAINS,
    FilterOperator.NOT_CONTAINS,
    FilterOperator.STARTS_WITH,
    FilterOperator.ENDS_WITH,
})

_NUMERIC_OPERATORS: frozenset[FilterOperator] = frozenset({
    FilterOperator.GREATER_THAN,
    FilterOperator.GREATER_THAN_OR_EQUAL,
    FilterOperator.LESS_THAN,
    FilterOperator.LESS_THAN_OR_EQUAL,
})

_SEQUENCE_TYPES = (list, tuple, set, frozenset)

# A predicate with a malformed value is sent as an empty membership test,
# which matches no row.
NEVER_SUFFIX: str = "__in"


class NegationMode(str, Enum):
    """How negated operators are sent to the remote endpoint.

    ``EXCLUDE``
        Emit the positive lookup under the ``exclude__`` prefix
        (``exclude__role=admin``); the endpoint applies it as an
        exclusion.
    ``REJECT``
        Raise :class:`UnsupportedOperatorError`.
    ``PASSTHROUGH``
        Emit the positive lookup unchanged and log a warning.  The remote
        result is *not* negated; only use this against endpoints that
        were built around that behavior.
    """

    EXCLUDE = "exclude"
    REJECT = "reject"
    PASSTHROUGH = "passthrough"


class UnsupportedOperatorError(ValueError):
    """A filter operator cannot be expressed as remote query parameters."""

    def __init__(self, predicate: FilterPredicate) -> None:
        super().__init__(
            f"Operator {predicate.operator!r} on field {predicate.field!r} "
            "cannot be sent to the remote endpoint without negation support"
        )
        self.predicate = predicate


def _param_value(value: Any) -> Any:
    return list(value) if isinstance(value, tuple) else value


def _is_number(value: Any) -> bool:
    return not math.isnan(coerce_number(value))


def _bound(value: Any) -> Any:
    return int(value) if isinstance(value, bool) else value


def _never(field_name: str) -> dict[str, Any]:
    return {f"{field_name}{NEVER_SUFFIX}": []}


def _predicate_params(
    predicate: FilterPredicate,
    negation: NegationMode,
    exclude_prefix: str,
) -> dict[str, Any] | None:
    """Translate one predicate into its query parameters.

    A malformed value matches no row locally, so it becomes an empty
    ``__in`` lookup here.  Returns ``None`` only for an unknown operator.
    """
    operator = predicate.known_operator
    field_name = predicate.field
    value = predicate.value

    if operator is None:
        logger.warning(
            "skipping filter on %r: unknown operator %r", field_name, predicate.operator
        )
        return None

    # -- null tests carry no value --
    if operator == FilterOperator.IS_NULL:
        return {f"{field_name}__isnull": True}
    if operator == FilterOperator.IS_NOT_NULL:
        return {f"{field_name}__isnull": False}

    # -- strict equality with null is a null test --
    if value is None and operator == FilterOperator.EQUALS:
        return {f"{field_name}__isnull": True}
    if value is None and operator == FilterOperator.NOT_EQUALS:
        return {f"{field_name}__isnull": False}

    if operator in _TEXT_OPERATORS:
        if value is None:
            return _never(field_name)
        value = stringify(value)
    elif operator in _NUMERIC_OPERATORS:
        if not _is_number(value):
            return _never(field_name)
        value = _bound(value)
    elif operator in (FilterOperator.IN, FilterOperator.NOT_IN):
        if not isinstance(value, _SEQUENCE_TYPES):
            return _never(field_name)
        value = list(value)
    elif operator == FilterOperator.BETWEEN:
        if (
            not isinstance(value, (list, tuple))
            or len(value) != 2
            or not all(_is_number(v) for v in value)
        ):
            return _never(field_name)
        return {f"{field_name}__gte": _bound(value[0]), f"{field_name}__lte": _bound(value[1])}

    prefix = ""
    if operator in NEGATED_COUNTERPARTS:
        if negation == NegationMode.REJECT:
            raise UnsupportedOperatorError(predicate)
        if negation == NegationMode.PASSTHROUGH:
            logger.warning(
                "filter %s %s on %r sent without negation; remote results will not be excluded",
                predicate.operator, value, field_name,
            )
        else:
            prefix = exclude_prefix
        operator = NEGATED_COUNTERPARTS[operator]

    key = f"{prefix}{field_name}{OPERATOR_SUFFIXES[operator]}"
    return {key: _param_value(value)}


def translate(
    search: str = "",
    filters: Sequence[FilterPredicate] = (),
    sort: SortSpec | None = None,
    pagination: PaginationWindow | None = None,
    *,
    negation: NegationMode | str = NegationMode.EXCLUDE,
    exclude_prefix: str = _DEFAULT_EXCLUDE_PREFIX,
) -> dict[str, Any]:
    """Build the remote list parameter map for the given primitives.

    The result is a flat, string-keyed dict with keys in sorted order, so
    identical input always yields an identical (and identically ordered)
    map.  When two predicates produce the same key, the later one wins,
    except that an empty membership test (a predicate that matches no
    row) is never overwritten.

    Args:
        search: Free-text search; omitted when blank.
        filters: The active filter set.
        sort: The active sort; encoded as ``ordering=field`` or
            ``ordering=-field``.
        pagination: The page window; emits ``page`` and ``page_size``.
        negation: How ``notEquals``/``notIn``/``notContains`` are sent
            (see :class:`NegationMode`).
        exclude_prefix: Key prefix used by :attr:`NegationMode.EXCLUDE`.

    Returns:
        The parameter map, e.g. ``{"age__gte": 18, "age__lte": 30}``.

    Raises:
        UnsupportedOperatorError: For a negated operator under
            :attr:`NegationMode.REJECT`.
    """
    negation = NegationMode(negation)
    params: dict[str, Any] = {}

    if pagination is not None:
        params[PAGE_PARAM] = pagination.page
        params[PAGE_SIZE_PARAM] = pagination.page_size

    if sort is not None and sort.field:
        params[ORDERING_PARAM] = f"-{sort.field}" if sort.direction == "desc" else sort.field

    if search and search.strip():
        params[SEARCH_PARAM] = search

    never: set[str] = set()
    for predicate in filters:
        translated = _predicate_params(predicate, negation, exclude_prefix)
        if translated:
            never.update(k for k, v in translated.items() if v == [])
            params.update(translated)
    for key in never:
        params[key] = []

    return dict(sorted(params.items()))


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_string(params: dict[str, Any]) -> str:
    """URL-encode a parameter map.

    Sequences become repeated keys (``role__in=a&role__in=b``), booleans
    become ``true``/``false``, an empty sequence is sent as an empty value
    and ``None`` values are dropped.  Returns
    ``""`` for an empty map, otherwise a string starting with ``?``.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set, frozenset)) and not value:
            pairs.append((key, ""))
        elif isinstance(value, (list, tuple, set, frozenset)):
            pairs.extend((key, _query_value(v)) for v in value)
        else:
            pairs.append((key, _query_value(value)))
    if not pairs:
        return ""
    return "?" + urlencode(pairs)


def normalize_list_response(payload: Any) -> ListResponse:
    """Normalize a remote list payload into a :class:`ListResponse`.

    Accepts an existing :class:`ListResponse`, the ``{"data", "meta"}``
    envelope, the legacy paginated ``{"results", "count", "next",
    "previous"}`` shape, or a bare list of entities.

    Raises:
        ValueError: If the payload matches none of those shapes.
    """
    if isinstance(payload, ListResponse):
        return payload
    if isinstance(payload, list):
        return ListResponse(data=payload, total=len(payload))
    if isinstance(payload, dict):
        if "results" in payload:
            return ListResponse(
                data=list(payload.get("results") or []),
                total=payload.get("count"),
                has_more=bool(payload.get("next")),
            )
        if "data" in payload:
            meta: dict[str, Any] = payload.get("meta") or {}
            data = list(payload.get("data") or [])
            total = meta.get("total")
            return ListResponse(
                data=data,
                total=total,
                has_more=bool(meta.get("hasMore", meta.get("has_more", False))),
            )
    raise ValueError(f"Unrecognised list response payload: {type(payload).__name__}")
