"""The collection view façade.

:class:`CollectionView` is what a rendering layer (or the Reflex state
mixin in :mod:`reflex_collection_view.state`) talks to.  It owns a
:class:`~reflex_collection_view.synchronizer.Synchronizer`, runs the
local pipeline in client mode, translates the state into remote query
parameters in server mode, and tells the owner about every change it
makes through one callback per axis.

Example::

    view = CollectionView(
        users,
        [ColumnDef("name"), ColumnDef("role")],
        on_sort_change=lambda sort: print("sorted by", sort),
    )
    view.request_sort("name")
    view.get_rows()
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Iterable, Sequence
from typing import Any, Callable

from reflex_collection_view.models import (
    _DEFAULT_PAGE_SIZES,
    ColumnDef,
    EntityId,
    FilterPredicate,
    PaginationWindow,
    SortSpec,
)
from reflex_collection_view.paths import _DEFAULT_ID_FIELD, entity_id
from reflex_collection_view.pipeline import paginate, process, total_pages
from reflex_collection_view.selection import (
    deselect_id,
    select_all_ids,
    select_id,
    selected_entities,
    toggle_id,
)
from reflex_collection_view.synchronizer import (
    EXTERNAL,
    Action,
    AddFilter,
    ClearFilters,
    EditFilter,
    RemoveFilter,
    SetFilters,
    SetPage,
    SetPageSize,
    SetSearch,
    SetSelection,
    SetSort,
    Synchronizer,
    SyncPagination,
    ToggleSort,
    ViewState,
    initial_state,
    reduce,
)
from reflex_collection_view.translator import (
    NegationMode,
    UnsupportedOperatorError,
    normalize_list_response,
    translate,
)

logger = logging.getLogger(__name__)

FetchHook = Callable[[dict[str, Any], int], Any]


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


_UNSET: Any = _Unset()


class CollectionView:
    """Stateful view over a collection of entities.

    Args:
        data: The entities.  In server mode this is the current page as
            returned by the remote endpoint.
        columns: Column descriptors; search runs over the visible ones.
        id_field: Dotted path of the entity identifier.
        sort: Initial sort.
        filters: Initial filter set (de-duplicated).
        search: Initial search text.
        pagination: Initial page window.  A window carrying
            ``total_count`` puts the view in server mode.
        selected_ids: Initial selection.
        multi_select: Allow more than one selected id.
        max_selections: Upper bound on the selection size.
        page_sizes: Allowed page sizes.
        on_sort_change: Called with the new :class:`SortSpec`.
        on_filters_change: Called with the new filter list.
        on_search_change: Called with the new search text.
        on_pagination_change: Called with the new :class:`PaginationWindow`.
        on_selection_change: Called with the new selection set.
        on_error: Called with the exception when a fetch fails.
        fetch: ``fetch(params, generation)`` hook used in server mode.
            May return a payload directly or an awaitable of one.
        negation: How negated operators are translated for *fetch*.
    """

    def __init__(
        self,
        data: Sequence[Any] = (),
        columns: Sequence[ColumnDef] = (),
        *,
        id_field: str = _DEFAULT_ID_FIELD,
        sort: SortSpec | None = None,
        filters: Sequence[FilterPredicate] = (),
        search: str = "",
        pagination: PaginationWindow | None = None,
        selected_ids: Iterable[EntityId] = (),
        multi_select: bool = False,
        max_selections: int | None = None,
        page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
        on_sort_change: Callable[[SortSpec | None], Any] | None = None,
        on_filters_change: Callable[[list[FilterPredicate]], Any] | None = None,
        on_search_change: Callable[[str], Any] | None = None,
        on_pagination_change: Callable[[PaginationWindow], Any] | None = None,
        on_selection_change: Callable[[frozenset[EntityId]], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        fetch: FetchHook | None = None,
        negation: NegationMode | str = NegationMode.EXCLUDE,
    ) -> None:
        self.columns: list[ColumnDef] = list(columns)
        self.id_field = id_field
        self.multi_select = multi_select
        self.max_selections = max_selections
        self.negation = NegationMode(negation)

        self.on_sort_change = on_sort_change
        self.on_filters_change = on_filters_change
        self.on_search_change = on_search_change
        self.on_pagination_change = on_pagination_change
        self.on_selection_change = on_selection_change
        self.on_error = on_error
        self.fetch = fetch

        self._sync = Synchronizer(
            initial_state(
                sort=sort,
                filters=tuple(filters),
                search=search,
                pagination=pagination,
                selected_ids=frozenset(selected_ids),
                page_sizes=page_sizes,
            ),
            page_sizes=page_sizes,
        )
        self._data: list[Any] = list(data)
        self._data_version = 0
        self._processed_key: tuple[Any, ...] | None = None
        self._processed: list[Any] = []

        self._mounted = True
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self.loading = False
        self.error: Exception | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> ViewState:
        return self._sync.state

    @property
    def mode(self) -> str:
        return self.state.mode

    @property
    def data(self) -> list[Any]:
        return self._data

    @property
    def page_sizes(self) -> tuple[int, ...]:
        return self._sync.page_sizes

    @property
    def generation(self) -> int:
        """Sequence number of the most recent fetch."""
        return self._generation

    @property
    def mounted(self) -> bool:
        return self._mounted

    def get_processed(self) -> list[Any]:
        """Return the searched, filtered and sorted rows (client mode), unpaginated.

        The result is memoized on the data and query axes, so repeated
        reads between changes do not re-run the pipeline.
        """
        state = self.state
        key = (self._data_version, state.search, state.filters, state.sort)
        if key != self._processed_key:
            self._processed = process(
                self._data, state.search, state.filters, state.sort, self.columns
            )
            self._processed_key = key
        return self._processed

    def get_rows(self) -> list[Any]:
        """Return the rows of the current page.

        Server mode returns the data as supplied; client mode runs the
        pipeline and slices out the current page.
        """
        if self.mode == "server":
            return list(self._data)
        window = self.state.pagination
        return paginate(self.get_processed(), window.page, window.page_size)

    def get_total(self) -> int:
        """Total row count: the supplied count in server mode, else the processed length."""
        total_count = self.state.pagination.total_count
        if total_count is not None:
            return total_count
        return len(self.get_processed())

    @property
    def page_count(self) -> int:
        return total_pages(self.get_total(), self.state.pagination.page_size)

    def query_params(self) -> dict[str, Any]:
        """Translate the current state into remote list parameters.

        Raises:
            UnsupportedOperatorError: If a negated filter cannot be sent
                under :attr:`NegationMode.REJECT`.
        """
        return self._params(self.state)

    def _params(self, state: ViewState) -> dict[str, Any]:
        return translate(
            state.search,
            state.filters,
            state.sort,
            state.pagination,
            negation=self.negation,
        )

    @property
    def selected_ids(self) -> frozenset[EntityId]:
        return self.state.selection

    @property
    def selected_entities(self) -> list[Any]:
        return selected_entities(self._data, self.state.selection, self.id_field)

    def visible_ids(self) -> list[EntityId]:
        return [entity_id(row, self.id_field) for row in self.get_rows()]

    # ------------------------------------------------------------------
    # Internal transitions
    # ------------------------------------------------------------------

    def _apply(self, action: Action) -> ViewState | None:
        """Dispatch *action*; return the new state, or ``None`` for a no-op."""
        previous, current = self._sync.dispatch(action)
        if current is previous:
            return None
        return current

    def _after_query_change(self, state: ViewState) -> None:
        if state.mode == "server":
            self._trigger_fetch()

    def request_sort(self, field_name: str) -> None:
        """Sort by *field_name*: ascending first, then flip on repeated calls."""
        self._request_sort(ToggleSort(field_name, expect_echo=self.on_sort_change is not None))

    def request_sort_spec(self, sort: SortSpec | None) -> None:
        """Set (or with ``None``, clear) the sort explicitly."""
        self._request_sort(SetSort(sort, expect_echo=self.on_sort_change is not None))

    def _request_sort(self, action: Action) -> None:
        state = self._apply(action)
        if state is None:
            return
        if self.on_sort_change is not None:
            self.on_sort_change(state.sort)
        self._after_query_change(state)

    def _refuses(self, action: Action) -> bool:
        """Report a filter change whose result could not be sent to the fetch hook."""
        if self.fetch is None:
            return False
        candidate = reduce(self.state, action, page_sizes=self.page_sizes)
        if candidate.mode != "server":
            return False
        try:
            self._params(candidate)
        except UnsupportedOperatorError as exc:
            logger.warning("refusing %s: %s", type(action).__name__, exc)
            self._report(exc)
            return True
        return False

    def _request_filters(self, action: Action) -> None:
        if self._refuses(action):
            return
        state = self._apply(action)
        if state is None:
            return
        if self.on_filters_change is not None:
            self.on_filters_change(list(state.filters))
        self._after_query_change(state)

    def _expects_filters_echo(self) -> bool:
        return self.on_filters_change is not None

    def request_filter(self, predicate: FilterPredicate) -> None:
        """Add *predicate*; a duplicate ``(field, operator)`` pair is ignored."""
        self._request_filters(AddFilter(predicate, expect_echo=self._expects_filters_echo()))

    def request_remove_filter(self, index: int) -> None:
        self._request_filters(RemoveFilter(index, expect_echo=self._expects_filters_echo()))

    def request_edit_filter(self, index: int, predicate: FilterPredicate) -> None:
        self._request_filters(
            EditFilter(index, predicate, expect_echo=self._expects_filters_echo())
        )

    def request_clear_filters(self) -> None:
        self._request_filters(ClearFilters(expect_echo=self._expects_filters_echo()))

    def request_filters(self, filters: Sequence[FilterPredicate]) -> None:
        """Replace the whole filter set (de-duplicated)."""
        self._request_filters(
            SetFilters(tuple(filters), expect_echo=self._expects_filters_echo())
        )

    def request_search(self, text: str) -> None:
        state = self._apply(
            SetSearch(text or "", expect_echo=self.on_search_change is not None)
        )
        if state is None:
            return
        if self.on_search_change is not None:
            self.on_search_change(state.search)
        self._after_query_change(state)

    def _request_pagination(self, action: Action) -> None:
        state = self._apply(action)
        if state is None:
            return
        if self.on_pagination_change is not None:
            self.on_pagination_change(state.pagination)
        self._after_query_change(state)

    def request_page(self, page: int) -> None:
        self._request_pagination(SetPage(page))

    def request_page_size(self, page_size: int) -> None:
        self._request_pagination(SetPageSize(page_size))

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _set_selection(self, selection: frozenset[EntityId]) -> frozenset[EntityId]:
        if selection == self.state.selection:
            return self.state.selection
        state = self._apply(SetSelection(selection))
        if state is not None and self.on_selection_change is not None:
            self.on_selection_change(state.selection)
        return self.state.selection

    def select(self, item_id: EntityId) -> frozenset[EntityId]:
        return self._set_selection(
            select_id(
                self.state.selection, item_id,
                multi_select=self.multi_select, max_selections=self.max_selections,
            )
        )

    def deselect(self, item_id: EntityId) -> frozenset[EntityId]:
        return self._set_selection(deselect_id(self.state.selection, item_id))

    def toggle(self, item_id: EntityId, multi_select: bool | None = None) -> frozenset[EntityId]:
        multi = self.multi_select if multi_select is None else multi_select
        return self._set_selection(
            toggle_id(
                self.state.selection, item_id,
                multi_select=multi, max_selections=self.max_selections,
            )
        )

    def select_all(self) -> frozenset[EntityId]:
        """Select exactly the rows on the current page."""
        return self._set_selection(
            select_all_ids(
                self.state.selection, self.visible_ids(),
                multi_select=self.multi_select, max_selections=self.max_selections,
            )
        )

    def clear_selection(self) -> frozenset[EntityId]:
        return self._set_selection(frozenset())

    # ------------------------------------------------------------------
    # External observations
    # ------------------------------------------------------------------

    def sync(
        self,
        *,
        data: Sequence[Any] = _UNSET,
        sort: SortSpec | None = _UNSET,
        filters: Sequence[FilterPredicate] = _UNSET,
        search: str = _UNSET,
        pagination: PaginationWindow = _UNSET,
        selected_ids: Iterable[EntityId] = _UNSET,
    ) -> bool:
        """Observe values pushed in by the owner.

        Only the axes passed are observed.  Sort, filters and search that
        echo this view's own last change are dropped.  No callback fires.
        In server mode a change to the query triggers a fetch.

        Returns:
            True if the state changed.
        """
        before = self.state
        if data is not _UNSET:
            self.set_data(data)
        if sort is not _UNSET:
            self._sync.dispatch(SetSort(sort, origin=EXTERNAL))
        if filters is not _UNSET:
            self._sync.dispatch(SetFilters(tuple(filters or ()), origin=EXTERNAL))
        if search is not _UNSET:
            self._sync.dispatch(SetSearch(search or "", origin=EXTERNAL))
        if pagination is not _UNSET:
            self._sync.dispatch(SyncPagination(pagination, origin=EXTERNAL))
        if selected_ids is not _UNSET:
            self._sync.dispatch(SetSelection(frozenset(selected_ids or ()), origin=EXTERNAL))

        after = self.state
        if _query_key(after) != _query_key(before):
            self._after_query_change(after)
        return after != before

    def set_data(self, data: Sequence[Any]) -> None:
        """Replace the entities; the selection is kept as-is."""
        self._data = list(data)
        self._data_version += 1

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return self._mounted and generation == self._generation

    def _trigger_fetch(self) -> "asyncio.Task[None] | None":
        """Invoke the fetch hook for the current state.

        Synchronous hooks settle before this returns.  Awaitable results
        are scheduled on the running event loop and the task is returned.

        Raises:
            RuntimeError: If the hook returns an awaitable and no event
                loop is running.
        """
        if self.fetch is None or not self._mounted:
            return None

        try:
            params = self.query_params()
        except UnsupportedOperatorError as exc:
            logger.warning("not fetching: %s", exc)
            self._report(exc)
            return None

        self._generation += 1
        generation = self._generation
        logger.debug("fetch generation %d: %s", generation, params)
        self.loading = True

        try:
            result = self.fetch(params, generation)
        except Exception as exc:
            try:
                self._reject(generation, exc)
            finally:
                self._settled(generation)
            return None

        if not inspect.isawaitable(result):
            try:
                self._accept(generation, result)
            except Exception as exc:
                self._reject(generation, exc)
            finally:
                self._settled(generation)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._settled(generation)
            if inspect.iscoroutine(result):
                result.close()
            raise
        self._task = loop.create_task(self._settle(generation, result))
        return self._task

    async def _settle(self, generation: int, awaitable: Awaitable[Any]) -> None:
        try:
            payload = await awaitable
            self._accept(generation, payload)
        except Exception as exc:
            self._reject(generation, exc)
        finally:
            self._settled(generation)

    def _accept(self, generation: int, payload: Any) -> None:
        if not self._is_current(generation):
            logger.debug(
                "dropping response for generation %d (latest %d)", generation, self._generation
            )
            return
        response = normalize_list_response(payload)
        self.set_data(response.data)
        self.error = None
        if response.total is not None and self.mode == "server":
            window = self.state.pagination
            self._sync.dispatch(
                SyncPagination(
                    PaginationWindow(window.page, window.page_size, response.total),
                    origin=EXTERNAL,
                )
            )
        logger.debug(
            "fetch generation %d: %d rows, total=%s", generation, len(response.data), response.total
        )

    def _reject(self, generation: int, exc: Exception) -> None:
        if not self._is_current(generation):
            logger.debug("dropping error for generation %d: %s", generation, exc)
            return
        logger.warning("fetch generation %d failed: %s", generation, exc)
        self._report(exc)

    def _report(self, exc: Exception) -> None:
        self.error = exc
        if self.on_error is not None:
            self.on_error(exc)

    def _settled(self, generation: int) -> None:
        if self._is_current(generation):
            self.loading = False

    async def refresh(self) -> list[Any]:
        """Re-run the fetch hook for the current state and return the rows."""
        task = self._trigger_fetch()
        if task is not None:
            await task
        return self.get_rows()

    def unmount(self) -> None:
        """Tear the view down; in-flight fetches can no longer write to it."""
        self._mounted = False
        self._task = None


def _query_key(state: ViewState) -> tuple[Any, ...]:
    window = state.pagination
    return (state.sort, state.filters, state.search, window.page, window.page_size)
