"""Polars LazyFrame backend for server-mode collections.

:class:`LazyFrameSource` answers the remote list endpoint contract (the
flat parameter map built by :func:`reflex_collection_view.translator.translate`)
directly from a polars ``LazyFrame``, so it can be handed to a
:class:`~reflex_collection_view.view.CollectionView` as its ``fetch``
hook.  The query is built lazily (filter -> count -> sort -> slice) and
only the requested page is ever collected.

Typical usage::

    from reflex_collection_view import CollectionView, LazyFrameSource, scan_file

    source = LazyFrameSource(scan_file(Path("users.parquet")))
    view = CollectionView(
        columns=source.column_defs(),
        pagination=PaginationWindow(total_count=0),
        fetch=source,
    )
"""

import logging
import time
from pathlib import Path
from typing import Any

import polars as pl

from reflex_collection_view.models import ColumnDef, ColumnType, ListResponse
from reflex_collection_view.translator import (
    _DEFAULT_EXCLUDE_PREFIX,
    ORDERING_PARAM,
    PAGE_PARAM,
    PAGE_SIZE_PARAM,
    SEARCH_PARAM,
)

logger = logging.getLogger(__name__)

_DEFAULT_PAGE_SIZE: int = 10

_RESERVED_PARAMS: frozenset[str] = frozenset(
    {PAGE_PARAM, PAGE_SIZE_PARAM, ORDERING_PARAM, SEARCH_PARAM}
)

# Longest suffixes first so "__gte" is not read as "__gt" + "e".
_LOOKUP_SUFFIXES: tuple[str, ...] = (
    "__istartswith",
    "__iendswith",
    "__icontains",
    "__isnull",
    "__gte",
    "__lte",
    "__gt",
    "__lt",
    "__in",
)


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

def polars_dtype_to_grid_type(dtype: pl.DataType) -> ColumnType:
    """Map a polars DataType to the closest column type.

    Returns:
        One of ``"string"``, ``"number"``, ``"boolean"``, ``"date"``,
        ``"dateTime"``, ``"singleSelect"``.
    """
    if isinstance(dtype, pl.Boolean):
        return "boolean"
    if dtype.is_numeric():
        return "number"
    if isinstance(dtype, pl.Date):
        return "date"
    if isinstance(dtype, pl.Datetime):
        return "dateTime"
    if _is_categorical_dtype(dtype):
        return "singleSelect"
    # Everything else (String, List, Struct, Duration, …)
    return "string"


def _is_categorical_dtype(dtype: pl.DataType) -> bool:
    return isinstance(dtype, (pl.Categorical, pl.Enum))


def _col_to_str_expr(col: pl.Expr, dtype: pl.DataType) -> pl.Expr:
    """Convert a column expression to a String, handling List/Array types.

    * ``List(T)`` / ``Array(T, n)`` → cast inner to String, then ``list.join(",")``
    * ``Boolean`` → ``"true"`` / ``"false"``
    * Everything else → ``cast(pl.String)``
    """
    if isinstance(dtype, (pl.List, pl.Array)):
        return col.cast(pl.List(pl.String)).list.join(",")
    if isinstance(dtype, pl.Boolean):
        return pl.when(col).then(pl.lit("true")).when(~col).then(pl.lit("false"))
    return col.cast(pl.String)


def build_column_defs_from_schema(
    schema: pl.Schema,
    *,
    column_descriptions: dict[str, str] | None = None,
    id_field: str | None = None,
    show_id_field: bool = False,
) -> list[ColumnDef]:
    """Build :class:`ColumnDef` instances from a polars Schema without collecting data.

    Args:
        schema: A polars ``Schema`` (e.g. ``lf.collect_schema()``).
        column_descriptions: Optional ``{column: description}`` mapping
            for column header tooltips.
        id_field: Name of the identifier column.  Hidden unless
            *show_id_field* is true.
        show_id_field: Whether to keep the *id_field* column visible.

    Returns:
        One column per schema entry, in schema order.
    """
    descriptions = column_descriptions or {}
    column_defs: list[ColumnDef] = []
    for order, (col_name, dtype) in enumerate(schema.items()):
        column_defs.append(
            ColumnDef(
                key=col_name,
                type=polars_dtype_to_grid_type(dtype),
                description=descriptions.get(col_name),
                visible=show_id_field or col_name != id_field,
                order=order,
            )
        )
    return column_defs


def _resolve_field_name(field_name: str, schema: pl.Schema) -> str | None:
    """Return the schema column matching *field_name*, case-insensitively."""
    if field_name in schema:
        return field_name
    lowered = field_name.lower()
    for name in schema.names():
        if name.lower() == lowered:
            return name
    return None


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def _coerce_numeric(value: Any) -> int | float | None:
    """Try to coerce *value* to a number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        # Try int first, then float
        for conv in (int, float):
            try:
                return conv(value)
            except ValueError:
                continue
    return None


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if value == "":
        return []
    if isinstance(value, str) and "," in value:
        return value.split(",")
    return [value]


# ---------------------------------------------------------------------------
# Parameter map -> polars expressions
# ---------------------------------------------------------------------------

def _split_lookup(key: str) -> tuple[str, str]:
    """Split ``"age__gte"`` into ``("age", "__gte")``; bare fields get ``""``."""
    for suffix in _LOOKUP_SUFFIXES:
        if key.endswith(suffix) and len(key) > len(suffix):
            return key[: -len(suffix)], suffix
    return key, ""


def _equals_expr(col: pl.Expr, dtype: pl.DataType, value: Any) -> pl.Expr:
    if isinstance(dtype, pl.Boolean):
        flag = _coerce_bool(value)
        return pl.lit(False) if flag is None else col == flag
    if dtype.is_numeric():
        number = _coerce_numeric(value)
        return pl.lit(False) if number is None else col == number
    return _col_to_str_expr(col, dtype) == str(value)


def _in_expr(col: pl.Expr, dtype: pl.DataType, value: Any) -> pl.Expr:
    values = _as_list(value)
    if not values:
        return pl.lit(False)
    if isinstance(dtype, pl.Boolean):
        flags = [f for f in (_coerce_bool(v) for v in values) if f is not None]
        return col.is_in(flags) if flags else pl.lit(False)
    if dtype.is_numeric():
        numbers = [float(n) for n in (_coerce_numeric(v) for v in values) if n is not None]
        return col.cast(pl.Float64).is_in(numbers) if numbers else pl.lit(False)
    return _col_to_str_expr(col, dtype).is_in([str(v) for v in values])


def _numeric_col(col: pl.Expr, dtype: pl.DataType) -> pl.Expr:
    if dtype.is_numeric():
        return col
    return col.cast(pl.String).str.strip_chars().cast(pl.Float64, strict=False)


def build_lookup_expr(
    key: str,
    value: Any,
    schema: pl.Schema,
    *,
    exclude_prefix: str = _DEFAULT_EXCLUDE_PREFIX,
) -> pl.Expr | None:
    """Translate one ``<field><suffix>`` parameter into a polars expression.

    Keys carrying *exclude_prefix* are negated; rows where the positive
    lookup is null count as not matching, so they survive the exclusion.

    Returns:
        A boolean expression, or ``None`` if the parameter cannot be
        translated (unknown column, non-boolean ``__isnull``).
    """
    negate = bool(exclude_prefix) and key.startswith(exclude_prefix)
    if negate:
        key = key[len(exclude_prefix):]

    raw_field, suffix = _split_lookup(key)
    field_name = _resolve_field_name(raw_field, schema)
    if field_name is None:
        logger.warning("ignoring lookup %r: no column %r", key, raw_field)
        return None

    col = pl.col(field_name)
    dtype = schema[field_name]
    expr: pl.Expr | None

    if suffix == "":
        expr = _equals_expr(col, dtype, value)
    elif suffix == "__isnull":
        flag = _coerce_bool(value)
        if flag is None:
            return None
        expr = col.is_null() if flag else col.is_not_null()
    elif suffix == "__in":
        expr = _in_expr(col, dtype, value)
    elif suffix in ("__icontains", "__istartswith", "__iendswith"):
        needle = str(value).lower()
        text = _col_to_str_expr(col, dtype).str.to_lowercase()
        if suffix == "__icontains":
            expr = text.str.contains(needle, literal=True)
        elif suffix == "__istartswith":
            expr = text.str.starts_with(needle)
        else:
            expr = text.str.ends_with(needle)
    else:
        number = _coerce_numeric(value)
        if number is None:
            # A non-numeric bound matches no row.
            return pl.lit(False)
        num_col = _numeric_col(col, dtype)
        expr = {
            "__gt": num_col > number,
            "__gte": num_col >= number,
            "__lt": num_col < number,
            "__lte": num_col <= number,
        }[suffix]

    if negate:
        return ~expr.fill_null(False)
    return expr


def build_search_expr(
    search: str,
    schema: pl.Schema,
    columns: list[str] | None = None,
) -> pl.Expr | None:
    """Case-insensitive literal substring match across *columns* (default: all)."""
    if not search or not search.strip():
        return None
    names = [c for c in (columns or schema.names()) if c in schema]
    if not names:
        return None
    needle = search.lower()
    matches = [
        _col_to_str_expr(pl.col(name), schema[name])
        .str.to_lowercase()
        .str.contains(needle, literal=True)
        .fill_null(False)
        for name in names
    ]
    return pl.any_horizontal(matches)


def apply_params(
    lf: pl.LazyFrame,
    params: dict[str, Any],
    schema: pl.Schema | None = None,
    *,
    search_columns: list[str] | None = None,
    exclude_prefix: str = _DEFAULT_EXCLUDE_PREFIX,
) -> pl.LazyFrame:
    """Apply the search and filter parameters to *lf* (AND-combined, no collect)."""
    if schema is None:
        schema = lf.collect_schema()

    exprs: list[pl.Expr] = []
    search_expr = build_search_expr(params.get(SEARCH_PARAM) or "", schema, search_columns)
    if search_expr is not None:
        exprs.append(search_expr)

    for key, value in params.items():
        if key in _RESERVED_PARAMS or value is None:
            continue
        expr = build_lookup_expr(key, value, schema, exclude_prefix=exclude_prefix)
        if expr is not None:
            exprs.append(expr)

    if not exprs:
        return lf
    return lf.filter(pl.all_horizontal(exprs))


def apply_ordering(
    lf: pl.LazyFrame,
    ordering: str | None,
    schema: pl.Schema | None = None,
) -> pl.LazyFrame:
    """Apply an ``ordering`` token (``"name"`` or ``"-name"``); nulls sort last."""
    if not ordering:
        return lf
    if schema is None:
        schema = lf.collect_schema()
    descending = ordering.startswith("-")
    field_name = _resolve_field_name(ordering.lstrip("-"), schema)
    if field_name is None:
        logger.warning("ignoring ordering %r: no such column", ordering)
        return lf
    return lf.sort(field_name, descending=descending, nulls_last=True, maintain_order=True)


def _dataframe_to_dicts(df: pl.DataFrame) -> list[dict[str, Any]]:
    """Convert a DataFrame to a list of JSON-safe dicts.

    Temporal columns become ISO-8601 strings and Struct columns are cast
    to String.  List columns stay Python lists.
    """
    casts: set[str] = {
        name
        for name, dtype in df.schema.items()
        if isinstance(dtype, (pl.Date, pl.Datetime, pl.Time, pl.Duration, pl.Struct))
    }
    if not casts:
        return df.to_dicts()
    return df.select(
        [pl.col(c).cast(pl.String) if c in casts else pl.col(c) for c in df.columns]
    ).to_dicts()


# ---------------------------------------------------------------------------
# Data source
# ---------------------------------------------------------------------------

class LazyFrameSource:
    """Remote list endpoint over a polars LazyFrame.

    Calling the source with a parameter map returns a
    :class:`ListResponse` holding the requested page and the filtered
    total, which makes it a drop-in ``fetch(params, generation)`` hook.

    Args:
        lf: The LazyFrame to serve.
        search_columns: Columns matched by ``search``; defaults to all.
        exclude_prefix: Key prefix marking negated lookups.
        row_id_field: When set, a global row index column of this name is
            added to every returned row.
    """

    def __init__(
        self,
        lf: pl.LazyFrame,
        *,
        search_columns: list[str] | None = None,
        exclude_prefix: str = _DEFAULT_EXCLUDE_PREFIX,
        row_id_field: str | None = None,
    ) -> None:
        self.lf = lf
        # Schema is cheap -- metadata only, no data scan.
        self.schema: pl.Schema = lf.collect_schema()
        self.search_columns = search_columns
        self.exclude_prefix = exclude_prefix
        self.row_id_field = row_id_field

    def column_defs(self, column_descriptions: dict[str, str] | None = None) -> list[ColumnDef]:
        return build_column_defs_from_schema(
            self.schema,
            column_descriptions=column_descriptions,
            id_field=self.row_id_field,
        )

    def query(self, params: dict[str, Any]) -> pl.LazyFrame:
        """Return the filtered (unsorted, unsliced) LazyFrame for *params*."""
        return apply_params(
            self.lf,
            params,
            self.schema,
            search_columns=self.search_columns,
            exclude_prefix=self.exclude_prefix,
        )

    def count(self, params: dict[str, Any]) -> int:
        """Number of rows matching *params*, via a single ``select(pl.len())``."""
        t0 = time.perf_counter()
        total: int = self.query(params).select(pl.len()).collect().item()
        logger.debug("row count: %d (%.1fms)", total, (time.perf_counter() - t0) * 1000)
        return total

    def fetch(self, params: dict[str, Any]) -> ListResponse:
        """Collect one page for *params*: filter -> count -> sort -> slice."""
        t0 = time.perf_counter()
        lf = self.query(params)

        total: int = lf.select(pl.len()).collect().item()

        lf = apply_ordering(lf, params.get(ORDERING_PARAM), self.schema)

        page = max(int(params.get(PAGE_PARAM) or 1), 1)
        page_size = int(params.get(PAGE_SIZE_PARAM) or _DEFAULT_PAGE_SIZE)
        offset = (page - 1) * page_size
        page_df: pl.DataFrame = lf.slice(offset, page_size).collect()
        if self.row_id_field is not None and self.row_id_field not in page_df.columns:
            page_df = page_df.with_row_index(self.row_id_field, offset=offset)

        rows = _dataframe_to_dicts(page_df)
        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "page refresh: offset=%d, slice=%d, total=%d, elapsed=%.1fms",
            offset, len(rows), total, elapsed_ms,
        )
        return ListResponse(data=rows, total=total, has_more=offset + len(rows) < total)

    def __call__(self, params: dict[str, Any], generation: int = 0) -> ListResponse:
        logger.debug("serving generation %d", generation)
        return self.fetch(params)


# ---------------------------------------------------------------------------
# File scanner
# ---------------------------------------------------------------------------

def scan_file(path: Path) -> pl.LazyFrame:
    """Scan a data file into a LazyFrame, choosing the reader by extension.

    * ``.parquet`` / ``.pq`` -- ``pl.scan_parquet()``.
    * ``.csv`` -- ``pl.scan_csv()``.
    * ``.tsv`` -- ``pl.scan_csv(separator="\\t")``.
    * ``.json`` -- ``pl.read_json().lazy()`` (no streaming scan).
    * ``.ndjson`` / ``.jsonl`` -- ``pl.scan_ndjson()``.
    * ``.ipc`` / ``.arrow`` / ``.feather`` -- ``pl.scan_ipc()``.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file extension is not recognised.
    """
    path = Path(path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = path.suffix.lower()

    if suffix in (".parquet", ".pq"):
        return pl.scan_parquet(path)
    if suffix == ".csv":
        return pl.scan_csv(path)
    if suffix == ".tsv":
        return pl.scan_csv(path, separator="\t")
    if suffix == ".json":
        return pl.read_json(path).lazy()
    if suffix in (".ndjson", ".jsonl"):
        return pl.scan_ndjson(path)
    if suffix in (".ipc", ".arrow", ".feather"):
        return pl.scan_ipc(path)

    raise ValueError(
        f"Unsupported file extension: {suffix!r}. "
        "Supported: .parquet, .pq, .csv, .tsv, .json, .ndjson, .jsonl, "
        ".ipc, .arrow, .feather"
    )
