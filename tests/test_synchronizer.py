import logging
from dataclasses import dataclass

import pytest

from reflex_collection_view.models import FilterPredicate, PaginationWindow, SortSpec
from reflex_collection_view.synchronizer import (
    EXTERNAL,
    Action,
    AddFilter,
    Axis,
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
    next_sort,
    reduce,
)

ADMIN = FilterPredicate("role", "equals", "admin")
ADULT = FilterPredicate("age", "greaterThanOrEqual", 18)


def on_page(page: int) -> ViewState:
    return ViewState(pagination=PaginationWindow(page, 10))


class TestInternalTransitions:
    def test_sets_flag_and_resets_page(self):
        state = reduce(on_page(3), SetSort(SortSpec("name")))
        assert state.sort == SortSpec("name")
        assert state.pending_echo == {Axis.SORT}
        assert state.pagination.page == 1

    def test_no_flag_without_listener(self):
        state = reduce(on_page(3), SetSearch("amy", expect_echo=False))
        assert state.search == "amy"
        assert state.pending_echo == frozenset()
        assert state.pagination.page == 1

    def test_toggle_sort_cycle(self):
        state = ViewState()
        directions = []
        for _ in range(3):
            state = reduce(state, ToggleSort("name"))
            directions.append(state.sort.direction)
        assert directions == ["asc", "desc", "asc"]
        state = reduce(state, ToggleSort("age"))
        assert state.sort == SortSpec("age", "asc")

    def test_next_sort(self):
        assert next_sort(None, "a") == SortSpec("a")
        assert next_sort(SortSpec("a"), "a") == SortSpec("a", "desc")
        assert next_sort(SortSpec("a", "desc"), "b") == SortSpec("b")

    def test_duplicate_filter_add_is_noop(self):
        state = reduce(ViewState(), AddFilter(FilterPredicate("x", "equals", 1)))
        again = reduce(state, AddFilter(FilterPredicate("x", "equals", 1)))
        assert again is state
        assert len(again.filters) == 1

    def test_same_pair_different_value_is_still_duplicate(self):
        state = reduce(ViewState(), AddFilter(FilterPredicate("x", "equals", 1)))
        assert reduce(state, AddFilter(FilterPredicate("x", "equals", 2))) is state

    def test_noop_sets_no_flag(self):
        state = ViewState(filters=(ADMIN,))
        assert reduce(state, AddFilter(ADMIN)).pending_echo == frozenset()

    def test_remove_and_edit(self):
        state = ViewState(filters=(ADMIN, ADULT))
        removed = reduce(state, RemoveFilter(0))
        assert removed.filters == (ADULT,)
        assert reduce(state, RemoveFilter(5)) is state

        edited = reduce(state, EditFilter(1, FilterPredicate("age", "lessThan", 65)))
        assert edited.filters == (ADMIN, FilterPredicate("age", "lessThan", 65))
        assert reduce(state, EditFilter(-1, ADULT)) is state
        # Editing into a pair that already exists elsewhere is refused.
        assert reduce(state, EditFilter(1, FilterPredicate("role", "equals", "x"))) is state

    def test_clear_and_set_filters(self):
        state = ViewState(filters=(ADMIN,))
        assert reduce(state, ClearFilters()).filters == ()
        replaced = reduce(state, SetFilters((ADULT, ADULT)))
        assert replaced.filters == (ADULT,)
        assert replaced.pending_echo == {Axis.FILTERS}


class TestEchoSuppression:
    def test_echo_is_dropped_and_flag_cleared(self):
        state = reduce(ViewState(), ToggleSort("a"))
        echoed = reduce(state, SetSort(SortSpec("a"), origin=EXTERNAL))
        assert echoed.sort == SortSpec("a")
        assert echoed.pending_echo == frozenset()

    def test_echo_then_new_request_ends_at_new_value(self):
        state = reduce(ViewState(), ToggleSort("a"))
        state = reduce(state, SetSort(SortSpec("a"), origin=EXTERNAL))
        state = reduce(state, ToggleSort("b"))
        assert state.sort == SortSpec("b")

    def test_late_echo_of_older_value_does_not_revert(self):
        state = reduce(ViewState(), ToggleSort("a"))
        state = reduce(state, ToggleSort("b"))
        state = reduce(state, SetSort(SortSpec("a"), origin=EXTERNAL))
        assert state.sort == SortSpec("b")
        state = reduce(state, SetSort(SortSpec("b"), origin=EXTERNAL))
        assert state.sort == SortSpec("b")

    def test_genuine_external_change_applies(self):
        state = reduce(on_page(4), SetSearch("bob", origin=EXTERNAL))
        assert state.search == "bob"
        assert state.pagination.page == 4
        assert state.pending_echo == frozenset()

    def test_external_same_value_returns_same_state(self):
        state = ViewState(search="bob")
        assert reduce(state, SetSearch("bob", origin=EXTERNAL)) is state

    def test_external_filters_are_deduplicated(self):
        state = reduce(ViewState(), SetFilters((ADMIN, ADMIN, ADULT), origin=EXTERNAL))
        assert state.filters == (ADMIN, ADULT)

    def test_axes_are_independent(self):
        state = reduce(ViewState(), SetSearch("x"))
        state = reduce(state, SetSort(SortSpec("name"), origin=EXTERNAL))
        assert state.sort == SortSpec("name")
        assert state.pending_echo == {Axis.SEARCH}


class TestPagination:
    def test_set_page_clamps_and_touches_nothing_else(self):
        state = ViewState(sort=SortSpec("a"), pending_echo=frozenset({Axis.SORT}))
        assert reduce(state, SetPage(0)).pagination.page == 1
        moved = reduce(state, SetPage(7))
        assert moved.pagination.page == 7
        assert moved.sort == state.sort
        assert moved.pending_echo == state.pending_echo

    def test_set_page_size(self):
        state = reduce(on_page(5), SetPageSize(25))
        assert state.pagination == PaginationWindow(1, 25)

    def test_invalid_page_size_degrades_to_default(self, caplog):
        with caplog.at_level(logging.WARNING):
            state = reduce(ViewState(pagination=PaginationWindow(3, 50)), SetPageSize(7))
        assert state.pagination == PaginationWindow(1, 10)
        assert "page size 7" in caplog.text

    def test_custom_page_sizes(self):
        state = reduce(ViewState(), SetPageSize(7), page_sizes=(7, 14))
        assert state.pagination.page_size == 7

    def test_external_pagination_always_applies(self):
        state = reduce(ViewState(), SyncPagination(PaginationWindow(3, 25, 120), origin=EXTERNAL))
        assert state.pagination == PaginationWindow(3, 25, 120)
        assert state.mode == "server"
        state = reduce(state, SyncPagination(PaginationWindow(3, 25), origin=EXTERNAL))
        assert state.mode == "client"

    def test_external_invalid_page_size(self):
        state = reduce(ViewState(), SyncPagination(PaginationWindow(4, 7, 100), origin=EXTERNAL))
        assert state.pagination == PaginationWindow(1, 10, 100)


class TestSelectionAndSeeding:
    def test_set_selection(self):
        state = reduce(ViewState(), SetSelection(frozenset({1, 2})))
        assert state.selection == {1, 2}

    def test_initial_state(self):
        state = initial_state(
            filters=[ADMIN, ADMIN],
            pagination=PaginationWindow(0, 13),
            selected_ids=[1, 1, 2],
        )
        assert state.filters == (ADMIN,)
        assert state.pagination == PaginationWindow(1, 10)
        assert state.selection == {1, 2}
        assert state.pending_echo == frozenset()
        assert state.mode == "client"

    def test_unknown_action(self):
        @dataclass(frozen=True)
        class Bogus(Action):
            pass

        with pytest.raises(TypeError):
            reduce(ViewState(), Bogus())


class TestSynchronizer:
    def test_dispatch_returns_previous_and_current(self):
        sync = Synchronizer()
        previous, current = sync.dispatch(SetSearch("amy"))
        assert previous.search == ""
        assert current is sync.state
        assert current.search == "amy"

    def test_dispatch_noop(self):
        sync = Synchronizer(ViewState(filters=(ADMIN,)))
        previous, current = sync.dispatch(AddFilter(ADMIN))
        assert previous is current

    def test_dispatch_logs_transitions(self, caplog):
        sync = Synchronizer()
        with caplog.at_level(logging.DEBUG, logger="reflex_collection_view.synchronizer"):
            sync.dispatch(ToggleSort("name"))
        assert "ToggleSort" in caplog.text
