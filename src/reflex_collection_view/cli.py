"""CLI for reflex-collection-view -- query data files through the collection engine.

Usage::

    # Search, filter, sort and page a CSV in memory (client mode)
    collection-view query users.csv --search amy --filter "age:between:[18,30]" --sort -age

    # Same query answered by the LazyFrame source (server mode)
    collection-view query users.parquet --filter role:equals:admin --server

    # Show the remote list parameters for a query
    collection-view params --filter role:notEquals:admin --sort name --query-string

Filters are written ``field:operator:value``; the value is parsed as JSON
when possible (``30``, ``true``, ``[18,30]``) and used as text otherwise.
"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from reflex_collection_view.models import (
    _DEFAULT_PAGE_SIZE,
    _DEFAULT_PAGE_SIZES,
    VALUELESS_OPERATORS,
    FilterOperator,
    FilterPredicate,
    PaginationWindow,
    SortSpec,
)
from reflex_collection_view.polars_utils import LazyFrameSource, _dataframe_to_dicts, scan_file
from reflex_collection_view.translator import (
    NegationMode,
    UnsupportedOperatorError,
    build_query_string,
    translate,
)
from reflex_collection_view.view import CollectionView

app = typer.Typer(
    name="collection-view",
    help="Search, filter, sort and page tabular data files.",
    no_args_is_help=True,
)


def _parse_value(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return text


def _parse_filter(spec: str) -> FilterPredicate:
    """Parse ``field:operator:value`` (the value is optional for null tests)."""
    parts = spec.split(":", 2)
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise typer.BadParameter(f"expected field:operator:value, got {spec!r}")
    field_name, operator = parts[0], parts[1]
    if FilterOperator.parse(operator) in VALUELESS_OPERATORS:
        return FilterPredicate(field_name, operator)
    if len(parts) < 3:
        raise typer.BadParameter(f"operator {operator!r} needs a value: {spec!r}")
    return FilterPredicate(field_name, operator, _parse_value(parts[2]))


def _parse_sort(spec: str | None) -> SortSpec | None:
    """``name`` sorts ascending, ``-name`` descending."""
    if not spec:
        return None
    if spec.startswith("-"):
        return SortSpec(spec[1:], "desc")
    return SortSpec(spec, "asc")


def _page_sizes(page_size: int) -> tuple[int, ...]:
    return tuple(sorted({*_DEFAULT_PAGE_SIZES, page_size}))


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


FilterOption = Annotated[
    Optional[list[str]],
    typer.Option("--filter", "-f", help="Filter as field:operator:value (repeatable)"),
]
SearchOption = Annotated[str, typer.Option("--search", "-s", help="Free-text search")]
SortOption = Annotated[Optional[str], typer.Option("--sort", help="Sort field; prefix with - for descending")]
PageOption = Annotated[int, typer.Option("--page", "-p", min=1, help="1-based page number")]
PageSizeOption = Annotated[int, typer.Option("--page-size", "-n", min=1, help="Rows per page")]
NegationOption = Annotated[
    NegationMode,
    typer.Option("--negation", help="How notEquals/notIn/notContains are sent to the backend"),
]


@app.command()
def query(
    file: Annotated[Path, typer.Argument(help="Path to the data file (CSV, TSV, Parquet, JSON, NDJSON, IPC)")],
    search: SearchOption = "",
    filters: FilterOption = None,
    sort: SortOption = None,
    page: PageOption = 1,
    page_size: PageSizeOption = _DEFAULT_PAGE_SIZE,
    server: Annotated[bool, typer.Option("--server", help="Answer through the LazyFrame source")] = False,
    negation: NegationOption = NegationMode.EXCLUDE,
) -> None:
    """Run a query over FILE and print the current page as JSON."""
    predicates = [_parse_filter(f) for f in filters or []]
    try:
        lf = scan_file(file)
    except (FileNotFoundError, ValueError) as exc:
        _fail(str(exc))

    options: dict[str, Any] = {
        "sort": _parse_sort(sort),
        "filters": predicates,
        "search": search,
        "page_sizes": _page_sizes(page_size),
        "negation": negation,
    }
    if server:
        source = LazyFrameSource(lf)
        view = CollectionView(
            columns=source.column_defs(),
            pagination=PaginationWindow(page, page_size, total_count=0),
            fetch=source,
            **options,
        )
        asyncio.run(view.refresh())
        if view.error is not None:
            _fail(str(view.error))
    else:
        view = CollectionView(
            _dataframe_to_dicts(lf.collect()),
            pagination=PaginationWindow(page, page_size),
            **options,
        )

    window = view.state.pagination
    result = {
        "mode": view.mode,
        "total": view.get_total(),
        "page": window.page,
        "page_size": window.page_size,
        "page_count": view.page_count,
        "rows": view.get_rows(),
    }
    typer.echo(json.dumps(result, indent=2, default=str, ensure_ascii=False))


@app.command()
def params(
    search: SearchOption = "",
    filters: FilterOption = None,
    sort: SortOption = None,
    page: PageOption = 1,
    page_size: PageSizeOption = _DEFAULT_PAGE_SIZE,
    negation: NegationOption = NegationMode.EXCLUDE,
    query_string: Annotated[bool, typer.Option("--query-string", "-q", help="Print a URL query string")] = False,
) -> None:
    """Print the remote list parameters for a query."""
    predicates = [_parse_filter(f) for f in filters or []]
    try:
        param_map = translate(
            search,
            predicates,
            _parse_sort(sort),
            PaginationWindow(page, page_size),
            negation=negation,
        )
    except UnsupportedOperatorError as exc:
        _fail(str(exc))

    if query_string:
        typer.echo(build_query_string(param_map))
    else:
        typer.echo(json.dumps(param_map, indent=2, default=str))


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
