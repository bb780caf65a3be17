"""View state reconciliation.

The collection's authoritative state is a single frozen
:class:`ViewState`.  It only changes through :func:`reduce`, which takes
the current state and an action and returns the next state.  Every
action carries its ``origin``:

* ``"internal"`` -- the engine's own interaction (a header click, a
  typed search).  The axis' origin flag is raised because the owner is
  about to be notified and will most likely hand the same value straight
  back as an external prop.
* ``"external"`` -- the owner pushing a value in.  If the axis' origin
  flag is raised the value is that echo: it is dropped and the flag is
  lowered.  Otherwise it is a genuine external change and is applied.

Sort, filters and search are echo-suppressed this way.  Pagination is
always applied from outside, and selection is always applied.

Because the reducer is pure, the whole reconciliation protocol is
testable without a rendering loop.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal

from reflex_collection_view.models import (
    _DEFAULT_PAGE_SIZE,
    _DEFAULT_PAGE_SIZES,
    EntityId,
    FilterPredicate,
    PaginationWindow,
    SortSpec,
    dedupe_filters,
)

logger = logging.getLogger(__name__)

Origin = Literal["internal", "external"]
INTERNAL: Origin = "internal"
EXTERNAL: Origin = "external"


class Axis(str, Enum):
    """State axes that take part in echo suppression."""

    SORT = "sort"
    FILTERS = "filters"
    SEARCH = "search"


@dataclass(frozen=True)
class ViewState:
    sort: SortSpec | None = None
    filters: tuple[FilterPredicate, ...] = ()
    search: str = ""
    pagination: PaginationWindow = field(default_factory=PaginationWindow)
    selection: frozenset[EntityId] = frozenset()
    pending_echo: frozenset[Axis] = frozenset()

    @property
    def mode(self) -> Literal["client", "server"]:
        """``"server"`` when the owner supplied a total count, else ``"client"``."""
        return "server" if self.pagination.total_count is not None else "client"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True, kw_only=True)
class Action:
    """Base transition.

    ``expect_echo`` is only consulted for internal sort/filter/search
    transitions: when nobody is listening for the change there is no
    echo to suppress, so the origin flag stays down.
    """

    origin: Origin = INTERNAL
    expect_echo: bool = True


@dataclass(frozen=True)
class SetSort(Action):
    sort: SortSpec | None


@dataclass(frozen=True)
class ToggleSort(Action):
    field: str


@dataclass(frozen=True)
class AddFilter(Action):
    predicate: FilterPredicate


@dataclass(frozen=True)
class RemoveFilter(Action):
    index: int


@dataclass(frozen=True)
class EditFilter(Action):
    index: int
    predicate: FilterPredicate


@dataclass(frozen=True)
class ClearFilters(Action):
    pass


@dataclass(frozen=True)
class SetFilters(Action):
    filters: tuple[FilterPredicate, ...]


@dataclass(frozen=True)
class SetSearch(Action):
    search: str


@dataclass(frozen=True)
class SetPage(Action):
    page: int


@dataclass(frozen=True)
class SetPageSize(Action):
    page_size: int


@dataclass(frozen=True)
class SyncPagination(Action):
    window: PaginationWindow


@dataclass(frozen=True)
class SetSelection(Action):
    selection: frozenset[EntityId]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

def next_sort(current: SortSpec | None, field_name: str) -> SortSpec:
    """Header-click cycle: a new field starts ascending, the same field flips."""
    if current is None or current.field != field_name:
        return SortSpec(field_name, "asc")
    return current.reversed()


def valid_page_size(
    page_size: int,
    page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
) -> int:
    """Return *page_size* if allowed, otherwise the default page size."""
    if page_size in page_sizes:
        return page_size
    fallback = _DEFAULT_PAGE_SIZE if _DEFAULT_PAGE_SIZE in page_sizes else page_sizes[0]
    logger.warning("page size %r not in %r; using %d", page_size, page_sizes, fallback)
    return fallback


def _internal(state: ViewState, axis: Axis, action: Action, **changes: Any) -> ViewState:
    """Apply an internally originated change: raise the flag, rewind to page 1."""
    pending = state.pending_echo | {axis} if action.expect_echo else state.pending_echo
    return replace(
        state,
        pending_echo=pending,
        pagination=replace(state.pagination, page=1),
        **changes,
    )


def _observe(state: ViewState, axis: Axis, **changes: Any) -> ViewState:
    """Apply an externally observed value unless it is an echo."""
    if axis in state.pending_echo:
        return replace(state, pending_echo=state.pending_echo - {axis})
    updated = replace(state, **changes)
    return state if updated == state else updated


def _filters_transition(
    state: ViewState,
    action: Action,
    filters: tuple[FilterPredicate, ...],
) -> ViewState:
    return _internal(state, Axis.FILTERS, action, filters=filters)


def reduce(
    state: ViewState,
    action: Action,
    *,
    page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
) -> ViewState:
    """Return the state after *action*.

    A transition that changes nothing (a duplicate filter, an
    out-of-range filter index) returns *state* itself, so callers can
    detect no-ops with ``is``.
    """
    external = action.origin == EXTERNAL

    # -- sort --
    if isinstance(action, SetSort):
        if external:
            return _observe(state, Axis.SORT, sort=action.sort)
        return _internal(state, Axis.SORT, action, sort=action.sort)
    if isinstance(action, ToggleSort):
        return _internal(state, Axis.SORT, action, sort=next_sort(state.sort, action.field))

    # -- search --
    if isinstance(action, SetSearch):
        if external:
            return _observe(state, Axis.SEARCH, search=action.search)
        return _internal(state, Axis.SEARCH, action, search=action.search)

    # -- filters --
    if isinstance(action, SetFilters):
        filters = dedupe_filters(action.filters)
        if external:
            return _observe(state, Axis.FILTERS, filters=filters)
        return _filters_transition(state, action, filters)
    if isinstance(action, AddFilter):
        if any(p.key == action.predicate.key for p in state.filters):
            return state
        return _filters_transition(state, action, state.filters + (action.predicate,))
    if isinstance(action, RemoveFilter):
        if not 0 <= action.index < len(state.filters):
            return state
        filters = state.filters[:action.index] + state.filters[action.index + 1:]
        return _filters_transition(state, action, filters)
    if isinstance(action, EditFilter):
        if not 0 <= action.index < len(state.filters):
            return state
        clash = any(
            p.key == action.predicate.key
            for i, p in enumerate(state.filters)
            if i != action.index
        )
        if clash:
            return state
        filters = list(state.filters)
        filters[action.index] = action.predicate
        return _filters_transition(state, action, tuple(filters))
    if isinstance(action, ClearFilters):
        return _filters_transition(state, action, ())

    # -- pagination: never echo-suppressed, never touches other axes --
    if isinstance(action, SetPage):
        return replace(state, pagination=replace(state.pagination, page=max(action.page, 1)))
    if isinstance(action, SetPageSize):
        page_size = valid_page_size(action.page_size, page_sizes)
        return replace(state, pagination=replace(state.pagination, page=1, page_size=page_size))
    if isinstance(action, SyncPagination):
        window = action.window
        page_size = valid_page_size(window.page_size, page_sizes)
        page = max(window.page, 1) if page_size == window.page_size else 1
        return replace(
            state,
            pagination=PaginationWindow(page, page_size, window.total_count),
        )

    # -- selection --
    if isinstance(action, SetSelection):
        return replace(state, selection=frozenset(action.selection))

    raise TypeError(f"Unknown view state action: {type(action).__name__}")


def initial_state(
    *,
    sort: SortSpec | None = None,
    filters: "list[FilterPredicate] | tuple[FilterPredicate, ...]" = (),
    search: str = "",
    pagination: PaginationWindow | None = None,
    selected_ids: "frozenset[EntityId] | set[EntityId] | tuple[EntityId, ...]" = (),
    page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
) -> ViewState:
    """Seed a :class:`ViewState` from the owner's initial values."""
    window = pagination or PaginationWindow()
    page_size = valid_page_size(window.page_size, page_sizes)
    return ViewState(
        sort=sort,
        filters=dedupe_filters(tuple(filters)),
        search=search or "",
        pagination=PaginationWindow(max(window.page, 1), page_size, window.total_count),
        selection=frozenset(selected_ids),
    )


class Synchronizer:
    """Sole owner of a collection's :class:`ViewState`.

    Everything else reads :attr:`state` snapshots and requests changes
    through :meth:`dispatch`.
    """

    def __init__(
        self,
        state: ViewState | None = None,
        *,
        page_sizes: tuple[int, ...] = _DEFAULT_PAGE_SIZES,
    ) -> None:
        self.page_sizes = page_sizes
        self._state = state if state is not None else ViewState()

    @property
    def state(self) -> ViewState:
        return self._state

    def dispatch(self, action: Action) -> tuple[ViewState, ViewState]:
        """Apply *action* and return the ``(previous, current)`` states."""
        previous = self._state
        self._state = reduce(previous, action, page_sizes=self.page_sizes)
        if self._state is previous:
            logger.debug("%s (%s): no change", type(action).__name__, action.origin)
        else:
            logger.debug(
                "%s (%s): pending_echo=%s page=%d",
                type(action).__name__, action.origin,
                sorted(a.value for a in self._state.pending_echo),
                self._state.pagination.page,
            )
        return previous, self._state
