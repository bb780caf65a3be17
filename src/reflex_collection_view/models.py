"""Query primitives, column definitions, and MUI X DataGrid model conversion.

Everything in this module is plain data.  The primitives are frozen
dataclasses so a new value always replaces the old one wholesale; the
engine never mutates a primitive in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Literal

SortDirection = Literal["asc", "desc"]
ColumnType = Literal["string", "number", "date", "dateTime", "boolean", "singleSelect"]

EntityId = str | int

_DEFAULT_PAGE_SIZE: int = 10
_DEFAULT_PAGE_SIZES: tuple[int, ...] = (10, 25, 50, 100)


class FilterOperator(str, Enum):
    """The fixed filter operator vocabulary shared by every execution path."""

    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"

    @classmethod
    def parse(cls, operator: Any) -> "FilterOperator | None":
        """Return the matching operator, or ``None`` for an unknown name."""
        if isinstance(operator, cls):
            return operator
        try:
            return cls(operator)
        except ValueError:
            return None


VALUELESS_OPERATORS: frozenset[FilterOperator] = frozenset(
    {FilterOperator.IS_NULL, FilterOperator.IS_NOT_NULL}
)
NEGATED_OPERATORS: frozenset[FilterOperator] = frozenset(
    {FilterOperator.NOT_EQUALS, FilterOperator.NOT_IN, FilterOperator.NOT_CONTAINS}
)


# ---------------------------------------------------------------------------
# Query primitives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SortSpec:
    """A single active sort: one field and one direction."""

    field: str
    direction: SortDirection = "asc"

    def __post_init__(self) -> None:
        if self.direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {self.direction!r}")

    def reversed(self) -> "SortSpec":
        return SortSpec(self.field, "desc" if self.direction == "asc" else "asc")

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "direction": self.direction}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SortSpec":
        return cls(field=data["field"], direction=data.get("direction", "asc"))


@dataclass(frozen=True)
class FilterPredicate:
    """One filter condition.

    ``operator`` is stored as a plain string so that a malformed
    configuration (an operator outside :class:`FilterOperator`) can still
    be represented; such predicates are ignored by every execution path.
    List values are frozen into tuples.
    """

    field: str
    operator: str
    value: Any = None

    def __post_init__(self) -> None:
        if isinstance(self.operator, FilterOperator):
            object.__setattr__(self, "operator", self.operator.value)
        if isinstance(self.value, list):
            object.__setattr__(self, "value", tuple(self.value))

    @property
    def key(self) -> tuple[str, str]:
        """The ``(field, operator)`` pair that must be unique within a filter set."""
        return (self.field, self.operator)

    @property
    def known_operator(self) -> FilterOperator | None:
        return FilterOperator.parse(self.operator)

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "operator": self.operator, "value": value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterPredicate":
        return cls(field=data["field"], operator=data["operator"], value=data.get("value"))


@dataclass(frozen=True)
class PaginationWindow:
    """A page position.

    ``total_count`` is only ever set from outside (server mode).  In client
    mode the total is derived from the processed result length.
    """

    page: int = 1
    page_size: int = _DEFAULT_PAGE_SIZE
    total_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"page": self.page, "pageSize": self.page_size}
        if self.total_count is not None:
            data["totalCount"] = self.total_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PaginationWindow":
        page_size = data.get("pageSize", data.get("page_size", _DEFAULT_PAGE_SIZE))
        total_count = data.get("totalCount", data.get("total_count"))
        return cls(page=int(data.get("page", 1)), page_size=int(page_size), total_count=total_count)


def dedupe_filters(filters: "list[FilterPredicate] | tuple[FilterPredicate, ...]") -> tuple[FilterPredicate, ...]:
    """Drop predicates whose ``(field, operator)`` pair was already seen."""
    seen: set[tuple[str, str]] = set()
    unique: list[FilterPredicate] = []
    for predicate in filters:
        if predicate.key in seen:
            continue
        seen.add(predicate.key)
        unique.append(predicate)
    return tuple(unique)


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------

def humanize_field_name(field_name: str) -> str:
    """Convert a snake_case, dotted, or raw field name to a human-friendly header.

    Examples:
        ``"first_name"`` -> ``"First Name"``
        ``"owner.email"`` -> ``"Owner Email"``
        ``"__row_id__"`` -> ``"Row Id"``
    """
    return field_name.strip("_").replace(".", " ").replace("_", " ").title()


@dataclass(frozen=True)
class ColumnDef:
    """Column descriptor supplied by the config layer.

    ``formatter`` receives ``(value, entity)`` and returns the display
    value.  Search matches against that display value, not the raw field.
    """

    key: str
    label: str | None = None
    sortable: bool = True
    filterable: bool = True
    type: ColumnType | None = None
    formatter: Callable[[Any, Any], Any] | None = field(default=None, compare=False)
    visible: bool = True
    order: int = 0
    description: str | None = None

    @property
    def header(self) -> str:
        return self.label if self.label is not None else humanize_field_name(self.key)

    def to_grid_column(self) -> dict[str, Any]:
        """Return the MUI ``GridColDef`` dict (camelCase keys) for this column."""
        col: dict[str, Any] = {
            "field": self.key,
            "headerName": self.header,
            "sortable": self.sortable,
            "filterable": self.filterable,
        }
        if self.type is not None:
            col["type"] = self.type
        if self.description is not None:
            col["description"] = self.description
        return col


def visible_columns(columns: "list[ColumnDef] | tuple[ColumnDef, ...]") -> list[ColumnDef]:
    """Return the visible columns in display order."""
    return sorted((c for c in columns if c.visible), key=lambda c: c.order)


# ---------------------------------------------------------------------------
# Remote results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ListResponse:
    """A remote list result, normalized from any supported payload shape."""

    data: list[Any]
    total: int | None = None
    has_more: bool = False


# ---------------------------------------------------------------------------
# MUI X DataGrid model conversion
# ---------------------------------------------------------------------------
# The grid speaks ``sortModel`` / ``filterModel`` / ``paginationModel``
# (0-based pages).  These helpers translate between those shapes and the
# primitives above.

_MUI_OPERATOR_MAP: dict[str, FilterOperator] = {
    "=": FilterOperator.EQUALS,
    "!=": FilterOperator.NOT_EQUALS,
    ">": FilterOperator.GREATER_THAN,
    ">=": FilterOperator.GREATER_THAN_OR_EQUAL,
    "<": FilterOperator.LESS_THAN,
    "<=": FilterOperator.LESS_THAN_OR_EQUAL,
    "is": FilterOperator.EQUALS,
    "not": FilterOperator.NOT_EQUALS,
    "isAnyOf": FilterOperator.IN,
    "isEmpty": FilterOperator.IS_NULL,
    "isNotEmpty": FilterOperator.IS_NOT_NULL,
    "doesNotContain": FilterOperator.NOT_CONTAINS,
    "doesNotEqual": FilterOperator.NOT_EQUALS,
}

_NUMERIC_MUI_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.EQUALS: "=",
    FilterOperator.NOT_EQUALS: "!=",
    FilterOperator.GREATER_THAN: ">",
    FilterOperator.GREATER_THAN_OR_EQUAL: ">=",
    FilterOperator.LESS_THAN: "<",
    FilterOperator.LESS_THAN_OR_EQUAL: "<=",
}

_GENERIC_MUI_OPERATORS: dict[FilterOperator, str] = {
    FilterOperator.NOT_EQUALS: "doesNotEqual",
    FilterOperator.NOT_CONTAINS: "doesNotContain",
    FilterOperator.IN: "isAnyOf",
    FilterOperator.IS_NULL: "isEmpty",
    FilterOperator.IS_NOT_NULL: "isNotEmpty",
}


def sort_model_to_spec(sort_model: list[dict[str, Any]] | None) -> SortSpec | None:
    """Take the first usable entry of a MUI ``sortModel``.

    The engine supports a single active sort, so further entries are
    ignored.
    """
    for entry in sort_model or []:
        field_name = entry.get("field")
        direction = entry.get("sort")
        if field_name and direction in ("asc", "desc"):
            return SortSpec(field_name, direction)
    return None


def sort_spec_to_model(sort: SortSpec | None) -> list[dict[str, str]]:
    if sort is None:
        return []
    return [{"field": sort.field, "sort": sort.direction}]


def filter_item_to_predicate(item: dict[str, Any]) -> FilterPredicate | None:
    """Translate a single MUI filter item to a :class:`FilterPredicate`.

    Returns ``None`` when the item cannot be applied yet: no field, no
    operator, or no value for an operator that needs one (the user has
    only opened the filter panel).
    """
    field_name: str | None = item.get("field")
    operator: str | None = item.get("operator")
    value: Any = item.get("value")
    if not field_name or not operator:
        return None

    mapped = _MUI_OPERATOR_MAP.get(operator) or FilterOperator.parse(operator)
    op_name = mapped.value if mapped is not None else operator
    if mapped not in VALUELESS_OPERATORS and value is None:
        return None
    if mapped in VALUELESS_OPERATORS:
        value = None
    return FilterPredicate(field_name, op_name, value)


def predicate_to_filter_item(
    predicate: FilterPredicate,
    column_type: ColumnType | None = None,
) -> dict[str, Any]:
    """Translate a predicate back into a MUI filter item.

    Number columns use the symbolic operators (``=``, ``>``, ...); other
    columns use MUI's named string operators where one exists.
    """
    op = predicate.known_operator
    mui_operator = predicate.operator
    if op is not None:
        if column_type == "number" and op in _NUMERIC_MUI_OPERATORS:
            mui_operator = _NUMERIC_MUI_OPERATORS[op]
        elif op in _GENERIC_MUI_OPERATORS:
            mui_operator = _GENERIC_MUI_OPERATORS[op]
    item = predicate.to_dict()
    item["operator"] = mui_operator
    return item


def pagination_model_to_window(
    model: dict[str, Any],
    total_count: int | None = None,
) -> PaginationWindow:
    """Convert a 0-based MUI ``paginationModel`` into a 1-based window."""
    return PaginationWindow(
        page=int(model.get("page", 0)) + 1,
        page_size=int(model.get("pageSize", _DEFAULT_PAGE_SIZE)),
        total_count=total_count,
    )


def window_to_pagination_model(window: PaginationWindow) -> dict[str, int]:
    return {"page": window.page - 1, "pageSize": window.page_size}
