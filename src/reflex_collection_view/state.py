"""Reflex state binding for collection views.

Users inherit from :class:`CollectionViewMixin` **and** ``rx.State``,
load data with :meth:`~CollectionViewMixin.set_collection` (client mode)
or :meth:`~CollectionViewMixin.set_lazyframe` (server mode), and wire the
``handle_cv_*`` event handlers to a grid component.

``CollectionViewMixin`` is a Reflex **state mixin** (``mixin=True``).
Each subclass gets its own independent set of ``cv_*`` reactive
variables, so multiple collections on the same page do not interfere
with each other.

Typical usage::

    from reflex_collection_view import CollectionViewMixin, scan_file

    class UsersState(CollectionViewMixin, rx.State):
        def load_data(self):
            yield from self.set_lazyframe(scan_file(Path("users.parquet")))

    def index():
        return data_grid(
            rows=UsersState.cv_rows,
            columns=UsersState.cv_columns,
            sort_model=UsersState.cv_sort_model,
            on_sort_model_change=UsersState.handle_cv_sort,
            ...
        )
"""

from collections.abc import Sequence
from typing import Any

import polars as pl
import reflex as rx

from reflex_collection_view.models import (
    _DEFAULT_PAGE_SIZE,
    _DEFAULT_PAGE_SIZES,
    ColumnDef,
    EntityId,
    PaginationWindow,
    filter_item_to_predicate,
    pagination_model_to_window,
    predicate_to_filter_item,
    sort_model_to_spec,
    sort_spec_to_model,
    visible_columns,
    window_to_pagination_model,
)
from reflex_collection_view.paths import _DEFAULT_ID_FIELD, entity_id
from reflex_collection_view.polars_utils import LazyFrameSource
from reflex_collection_view.view import CollectionView

_ROW_ID_FIELD: str = "__row_id__"


# ---------------------------------------------------------------------------
# Module-level view registry
# ---------------------------------------------------------------------------
# Views hold callables and LazyFrames, which are not JSON-serialisable, so
# they cannot live inside ``rx.State``.  They are kept here keyed by a
# string ID (the state class name).

_view_registry: dict[str, CollectionView] = {}


def _get_view(view_id: str) -> CollectionView | None:
    return _view_registry.get(view_id) if view_id else None


def _columns_from_entities(entities: Sequence[Any]) -> list[ColumnDef]:
    if not entities or not isinstance(entities[0], dict):
        return []
    return [ColumnDef(key=key, order=i) for i, key in enumerate(entities[0])]


def view_snapshot(view: CollectionView) -> dict[str, Any]:
    """Return the JSON-safe values a :class:`CollectionViewMixin` exposes for *view*.

    Keys match the mixin's ``cv_*`` vars without the prefix.
    """
    state = view.state
    column_types = {c.key: c.type for c in view.columns}
    total = view.get_total()
    page_count = view.page_count
    window = state.pagination
    selected = sorted(state.selection, key=str)
    return {
        "rows": view.get_rows(),
        "columns": [c.to_grid_column() for c in visible_columns(view.columns)],
        "row_count": total,
        "page_count": page_count,
        "mode": state.mode,
        "search": state.search,
        "sort_model": sort_spec_to_model(state.sort),
        "filters": [p.to_dict() for p in state.filters],
        "filter_model": {
            "items": [
                predicate_to_filter_item(p, column_types.get(p.field)) for p in state.filters
            ],
        },
        "pagination_model": window_to_pagination_model(window),
        "page_size_options": list(view.page_sizes),
        "selected_ids": selected,
        "selected_rows": view.selected_entities,
        "loading": view.loading,
        "error": str(view.error) if view.error is not None else "",
        "stats": f"{total:,} rows  page {window.page}/{max(page_count, 1)}  ({state.mode})",
    }


def collection_view(
    entities: list[dict[str, Any]],
    columns: list[ColumnDef] | None = None,
    *,
    id_field: str = _DEFAULT_ID_FIELD,
    multi_select: bool = False,
    max_selections: int | None = None,
    page_size: int = _DEFAULT_PAGE_SIZE,
    page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
) -> CollectionView:
    """Build a client-mode view; columns are inferred from the first entity when omitted."""
    return CollectionView(
        entities,
        columns if columns is not None else _columns_from_entities(entities),
        id_field=id_field,
        multi_select=multi_select,
        max_selections=max_selections,
        pagination=PaginationWindow(1, page_size),
        page_sizes=page_sizes,
    )


def lazyframe_view(
    lf: pl.LazyFrame,
    descriptions: dict[str, str] | None = None,
    *,
    page_size: int = _DEFAULT_PAGE_SIZE,
    page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
    multi_select: bool = False,
    max_selections: int | None = None,
) -> CollectionView:
    """Build a server-mode view over *lf* with its first page already loaded.

    Rows are identified by a global row index column (``__row_id__``).
    """
    source = LazyFrameSource(lf, row_id_field=_ROW_ID_FIELD)
    view = CollectionView(
        columns=source.column_defs(descriptions),
        id_field=_ROW_ID_FIELD,
        multi_select=multi_select,
        max_selections=max_selections,
        pagination=PaginationWindow(1, page_size, total_count=0),
        page_sizes=page_sizes,
        fetch=source,
    )
    first = source(view.query_params())
    view.sync(
        data=first.data,
        pagination=PaginationWindow(1, view.state.pagination.page_size, first.total),
    )
    return view


def apply_filter_model(view: CollectionView, filter_model: dict[str, Any]) -> None:
    """Merge a MUI ``filterModel`` into *view*'s filter set.

    MUI Community sends one filter item at a time, so items are
    **merged** rather than replacing the whole set:

    * An item **with a value** replaces the filter already on that
      field, or is added as a new filter.
    * An item **without a value** is ignored (the user only opened
      the filter panel).
    * An **empty items list** clears all filters.
    """
    items: list[dict[str, Any]] = filter_model.get("items", [])
    if not items:
        view.request_clear_filters()
        return
    for item in items:
        predicate = filter_item_to_predicate(item)
        if predicate is None:
            continue
        existing = [i for i, p in enumerate(view.state.filters) if p.field == predicate.field]
        if existing:
            view.request_edit_filter(existing[0], predicate)
        else:
            view.request_filter(predicate)


def apply_pagination_model(view: CollectionView, pagination_model: dict[str, Any]) -> None:
    """Apply a 0-based MUI ``paginationModel``.

    A page size change returns to the first page; otherwise the page moves.
    """
    window = pagination_model_to_window(pagination_model)
    if window.page_size != view.state.pagination.page_size:
        view.request_page_size(window.page_size)
    else:
        view.request_page(window.page)


def clicked_row_id(params: dict[str, Any], id_field: str = _DEFAULT_ID_FIELD) -> EntityId | None:
    """Return the id from MUI ``onRowClick`` params, falling back to the row itself."""
    row_id: EntityId | None = params.get("id")
    if row_id is None:
        row_id = entity_id(params.get("row") or {}, id_field)
    return row_id


# ---------------------------------------------------------------------------
# CollectionViewMixin
# ---------------------------------------------------------------------------

class CollectionViewMixin(rx.State, mixin=True):
    """Reflex State mixin exposing a :class:`CollectionView` as reactive vars.

    .. important::

       Subclasses **must** also inherit from ``rx.State`` (or another
       non-mixin state class) so that Reflex's metaclass registers the
       vars on the child::

           class MyCollection(CollectionViewMixin, rx.State):
               ...

    All state variable names are prefixed with ``cv_`` to avoid
    collisions when composed with other state.
    """

    # -- Frontend state vars --
    cv_rows: list[dict[str, Any]] = []
    cv_columns: list[dict[str, Any]] = []
    cv_row_count: int = 0
    cv_page_count: int = 0
    cv_mode: str = "client"
    cv_loading: bool = False
    cv_loaded: bool = False
    cv_error: str = ""
    cv_stats: str = ""
    cv_search: str = ""
    cv_sort_model: list[dict[str, str]] = []
    cv_filters: list[dict[str, Any]] = []
    cv_filter_model: dict[str, Any] = {"items": []}
    cv_pagination_model: dict[str, int] = {"page": 0, "pageSize": _DEFAULT_PAGE_SIZE}
    cv_page_size_options: list[int] = list(_DEFAULT_PAGE_SIZES)
    cv_selected_ids: list[str | int] = []
    cv_selected_rows: list[dict[str, Any]] = []

    # -- Backend-only vars (not sent to frontend) --
    _cv_view_id: str = ""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set_collection(
        self,
        entities: list[dict[str, Any]],
        columns: list[ColumnDef] | None = None,
        *,
        id_field: str = _DEFAULT_ID_FIELD,
        multi_select: bool = False,
        max_selections: int | None = None,
        page_size: int = _DEFAULT_PAGE_SIZE,
        page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
    ) -> None:
        """Browse an in-memory list of entities (client mode).

        Args:
            entities: JSON-safe entity dicts.
            columns: Column descriptors; inferred from the first entity's
                keys when omitted.
            id_field: Dotted path of the entity identifier.
            multi_select: Allow selecting more than one row.
            max_selections: Upper bound on the selection size.
            page_size: Initial page size.
            page_sizes: Allowed page sizes.
        """
        view = collection_view(
            entities,
            columns,
            id_field=id_field,
            multi_select=multi_select,
            max_selections=max_selections,
            page_size=page_size,
            page_sizes=page_sizes,
        )
        self._register_view(view)

    def set_lazyframe(
        self,
        lf: pl.LazyFrame,
        descriptions: dict[str, str] | None = None,
        *,
        page_size: int = _DEFAULT_PAGE_SIZE,
        page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
        multi_select: bool = False,
        max_selections: int | None = None,
    ):
        """Browse a polars LazyFrame (server mode).

        This is a **generator** -- use ``yield from self.set_lazyframe(...)``
        inside your event handler so the loading state is sent to the
        frontend immediately.

        Only the schema and the first page are computed here; every later
        page, sort, filter or search is answered by a fresh lazy query.

        Args:
            lf: The polars LazyFrame to browse.
            descriptions: Optional ``{column: description}`` mapping for
                column header tooltips.
            page_size: Initial page size.
            page_sizes: Allowed page sizes.
            multi_select: Allow selecting more than one row.
            max_selections: Upper bound on the selection size.
        """
        self.cv_loading = True  # type: ignore[assignment]
        self.cv_stats = "Preparing LazyFrame..."  # type: ignore[assignment]
        yield  # send loading state to the frontend immediately

        view = lazyframe_view(
            lf,
            descriptions,
            page_size=page_size,
            page_sizes=page_sizes,
            multi_select=multi_select,
            max_selections=max_selections,
        )
        self._register_view(view)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def handle_cv_sort(self, sort_model: list[dict[str, Any]]):
        """Apply a MUI ``sortModel`` (only its first entry is used)."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        self.cv_loading = True  # type: ignore[assignment]
        yield
        view.request_sort_spec(sort_model_to_spec(sort_model))
        self._pull(view)

    def handle_cv_header_click(self, field: str) -> None:
        """Cycle the sort on *field*: ascending, then descending, then ascending."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.request_sort(field)
        self._pull(view)

    def handle_cv_filter(self, filter_model: dict[str, Any]):
        """Merge a MUI ``filterModel`` into the active filter set (see :func:`apply_filter_model`)."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        self.cv_loading = True  # type: ignore[assignment]
        yield
        apply_filter_model(view, filter_model)
        self._pull(view)

    def handle_cv_remove_filter(self, index: int) -> None:
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.request_remove_filter(index)
        self._pull(view)

    def clear_cv_filters(self):
        """Remove every filter and reset the MUI filter model."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        self.cv_loading = True  # type: ignore[assignment]
        yield
        view.request_clear_filters()
        self._pull(view)

    def handle_cv_search(self, text: str):
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        self.cv_loading = True  # type: ignore[assignment]
        yield
        view.request_search(text)
        self._pull(view)

    def handle_cv_pagination(self, pagination_model: dict[str, int]) -> None:
        """Apply a 0-based MUI ``paginationModel``."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        apply_pagination_model(view, pagination_model)
        self._pull(view)

    def handle_cv_page(self, page: int) -> None:
        """Go to the 1-based *page*."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.request_page(page)
        self._pull(view)

    def handle_cv_page_size(self, page_size: int) -> None:
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.request_page_size(int(page_size))
        self._pull(view)

    def handle_cv_row_select(self, params: dict[str, Any]) -> None:
        """Toggle the selection of the clicked row (MUI ``onRowClick`` params)."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        row_id = clicked_row_id(params, view.id_field)
        if row_id is None:
            return
        view.toggle(row_id)
        self._pull(view)

    def handle_cv_select_all(self) -> None:
        """Select every row of the current page (multi-select only)."""
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.select_all()
        self._pull(view)

    def clear_cv_selection(self) -> None:
        view = _get_view(self._cv_view_id)
        if view is None:
            return
        view.clear_selection()
        self._pull(view)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _register_view(self, view: CollectionView) -> None:
        # Determine view ID from the state class name.
        view_id = type(self).__name__
        previous = _view_registry.get(view_id)
        if previous is not None:
            previous.unmount()
        _view_registry[view_id] = view
        self._cv_view_id = view_id  # type: ignore[assignment]
        self.cv_loaded = True  # type: ignore[assignment]
        self._pull(view)

    def _pull(self, view: CollectionView) -> None:
        """Copy the view's current snapshot into the ``cv_*`` vars."""
        snapshot = view_snapshot(view)
        self.cv_rows = snapshot["rows"]  # type: ignore[assignment]
        self.cv_columns = snapshot["columns"]  # type: ignore[assignment]
        self.cv_row_count = snapshot["row_count"]  # type: ignore[assignment]
        self.cv_page_count = snapshot["page_count"]  # type: ignore[assignment]
        self.cv_mode = snapshot["mode"]  # type: ignore[assignment]
        self.cv_search = snapshot["search"]  # type: ignore[assignment]
        self.cv_sort_model = snapshot["sort_model"]  # type: ignore[assignment]
        self.cv_filters = snapshot["filters"]  # type: ignore[assignment]
        self.cv_filter_model = snapshot["filter_model"]  # type: ignore[assignment]
        self.cv_pagination_model = snapshot["pagination_model"]  # type: ignore[assignment]
        self.cv_page_size_options = snapshot["page_size_options"]  # type: ignore[assignment]
        self.cv_selected_ids = snapshot["selected_ids"]  # type: ignore[assignment]
        self.cv_selected_rows = snapshot["selected_rows"]  # type: ignore[assignment]
        self.cv_error = snapshot["error"]  # type: ignore[assignment]
        self.cv_stats = snapshot["stats"]  # type: ignore[assignment]
        self.cv_loading = snapshot["loading"]  # type: ignore[assignment]
