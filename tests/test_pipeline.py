import math
from datetime import date

import pytest

from reflex_collection_view.models import ColumnDef, FilterPredicate, SortSpec
from reflex_collection_view.pipeline import (
    coerce_number,
    compare_values,
    evaluate_predicate,
    filter_entities,
    format_cell_value,
    paginate,
    process,
    search_entities,
    sort_entities,
    strict_equals,
    stringify,
    total_pages,
)


def ids(rows):
    return [row["id"] for row in rows]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

class TestValueHelpers:
    @pytest.mark.parametrize(
        "value, text",
        [
            (None, ""),
            (True, "true"),
            (False, "false"),
            (3.0, "3"),
            (2.5, "2.5"),
            (["a", 1], "a,1"),
            (date(2024, 1, 31), "2024-01-31"),
            ("Amy", "Amy"),
        ],
    )
    def test_stringify(self, value, text):
        assert stringify(value) == text

    def test_coerce_number(self):
        assert coerce_number("42") == 42.0
        assert coerce_number(" 1.5 ") == 1.5
        assert math.isnan(coerce_number("abc"))
        assert math.isnan(coerce_number(""))
        assert math.isnan(coerce_number(None))

    def test_strict_equals(self):
        assert strict_equals(1, 1.0)
        assert strict_equals("a", "a")
        assert not strict_equals(1, True)
        assert not strict_equals("1", 1)
        assert not strict_equals(None, "")
        assert strict_equals(None, None)

    def test_compare_values_falls_back_to_text(self):
        assert compare_values(1, 2) == -1
        assert compare_values("b", "a") == 1
        assert compare_values(1, "a") == -1


class TestFormatCellValue:
    def test_formatter_wins(self):
        col = ColumnDef("price", type="number", formatter=lambda v, e: f"${v}")
        assert format_cell_value(5, col, {}) == "$5"

    def test_typed_rendering(self):
        assert format_cell_value(True, ColumnDef("ok", type="boolean"), {}) == "Yes"
        assert format_cell_value(None, ColumnDef("ok", type="boolean"), {}) == "No"
        assert format_cell_value(1234567, ColumnDef("n", type="number"), {}) == "1,234,567"
        assert format_cell_value(None, ColumnDef("n"), {}) == ""
        assert format_cell_value(date(2024, 5, 1), ColumnDef("d", type="date"), {}) == "2024-05-01"


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class TestSearch:
    def test_blank_search_keeps_everything(self, users):
        assert search_entities(users, "") == users
        assert search_entities(users, "   ") == users

    def test_top_level_values_without_columns(self, users):
        assert ids(search_entities(users, "ALI")) == [1, 4]

    def test_only_visible_columns_are_searched(self, users):
        cols = [ColumnDef("name"), ColumnDef("role", visible=False)]
        assert ids(search_entities(users, "admin", cols)) == []
        assert ids(search_entities(users, "bob", cols)) == [2]

    def test_search_matches_formatted_value(self):
        rows = [{"id": 1, "price": 1500}, {"id": 2, "price": 20}]
        cols = [ColumnDef("price", formatter=lambda v, e: f"EUR {v / 100:.2f}")]
        assert ids(search_entities(rows, "eur 15.00", cols)) == [1]
        assert ids(search_entities(rows, "1500", cols)) == []

    def test_search_matches_boolean_display_text(self):
        rows = [{"id": 1, "active": True}, {"id": 2, "active": False}]
        assert ids(search_entities(rows, "yes", [ColumnDef("active", type="boolean")])) == [1]

    def test_search_nested_column(self):
        rows = [{"id": 1, "owner": {"name": "Amy"}}, {"id": 2, "owner": None}]
        assert ids(search_entities(rows, "amy", [ColumnDef("owner.name")])) == [1]


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------

class TestFilter:
    def test_equals_scenario(self):
        rows = [
            {"id": 1, "role": "admin"},
            {"id": 2, "role": "editor"},
            {"id": 3, "role": "viewer"},
        ]
        result = process(rows, filters=[FilterPredicate("role", "equals", "admin")])
        assert ids(result) == [1]

    def test_equals_is_strict(self):
        rows = [{"id": 1, "v": 1}, {"id": 2, "v": "1"}, {"id": 3, "v": True}]
        assert ids(filter_entities(rows, [FilterPredicate("v", "equals", 1)])) == [1]
        assert ids(filter_entities(rows, [FilterPredicate("v", "notEquals", 1)])) == [2, 3]

    @pytest.mark.parametrize(
        "operator, value, expected",
        [
            ("contains", "LI", [1, 3, 4]),
            ("notContains", "li", [2, 5, 6]),
            ("startsWith", "c", [3]),
            ("endsWith", "A", [4]),
            ("greaterThan", 30, [1, 5]),
            ("greaterThanOrEqual", "30", [1, 4, 5, 6]),
            ("lessThan", 30, [2]),
            ("lessThanOrEqual", 30, [2, 4, 6]),
            ("between", [18, 30], [2, 4, 6]),
            ("isNull", None, [3]),
            ("isNotNull", "ignored", [1, 2, 4, 5, 6]),
        ],
    )
    def test_operators(self, users, operator, value, expected):
        field_name = "name" if "With" in operator or "ontains" in operator else "age"
        predicate = FilterPredicate(field_name, operator, value)
        assert ids(filter_entities(users, [predicate])) == expected

    def test_membership(self, users):
        assert ids(filter_entities(users, [FilterPredicate("role", "in", ["admin", "editor"])])) == [1, 2, 4]
        assert ids(filter_entities(users, [FilterPredicate("role", "notIn", ["admin", "editor"])])) == [3, 5, 6]

    def test_malformed_values_fail_closed(self, users):
        assert filter_entities(users, [FilterPredicate("role", "in", "admin")]) == []
        assert filter_entities(users, [FilterPredicate("role", "notIn", "admin")]) == []
        assert filter_entities(users, [FilterPredicate("age", "between", [18])]) == []
        assert filter_entities(users, [FilterPredicate("age", "between", 18)]) == []
        assert filter_entities(users, [FilterPredicate("age", "greaterThan", "old")]) == []
        assert filter_entities(users, [FilterPredicate("name", "contains", None)]) == []

    def test_unknown_operator_fails_open(self, users):
        predicate = FilterPredicate("age", "roughly", 30)
        assert evaluate_predicate(users[0], predicate) is True
        assert process(users, filters=[predicate]) == users

    def test_filters_are_and_combined(self, users):
        filters = [
            FilterPredicate("role", "equals", "admin"),
            FilterPredicate("age", "greaterThan", 31),
        ]
        assert ids(filter_entities(users, filters)) == [1]

    def test_missing_field_reads_as_null(self, users):
        assert ids(filter_entities(users, [FilterPredicate("nickname", "isNull")])) == ids(users)


# ---------------------------------------------------------------------------
# Sort
# ---------------------------------------------------------------------------

class TestSort:
    def test_scenario_sort_by_name(self):
        rows = [{"id": 1, "name": "Bob"}, {"id": 2, "name": "Amy"}]
        result = process(rows, sort=SortSpec("name", "asc"))
        assert [r["name"] for r in result] == ["Amy", "Bob"]

    def test_nulls_last_in_both_directions(self, users):
        assert ids(sort_entities(users, SortSpec("age", "asc"))) == [2, 4, 6, 1, 5, 3]
        assert ids(sort_entities(users, SortSpec("age", "desc"))) == [5, 1, 4, 6, 2, 3]

    def test_sort_is_stable(self, users):
        assert ids(sort_entities(users, SortSpec("role"))) == [1, 4, 2, 3, 6, 5]

    def test_reversing_twice_is_identity(self, users):
        ascending = sort_entities(users, SortSpec("name", "asc"))
        twice = sort_entities(sort_entities(ascending, SortSpec("name", "desc")), SortSpec("name", "asc"))
        assert twice == ascending

    def test_unknown_sort_field_keeps_order(self, users):
        assert sort_entities(users, SortSpec("nickname")) == users

    def test_mixed_types_compare_as_text(self):
        rows = [{"id": 1, "v": "a"}, {"id": 2, "v": 1}]
        assert ids(sort_entities(rows, SortSpec("v"))) == [2, 1]


# ---------------------------------------------------------------------------
# Pipeline + pagination
# ---------------------------------------------------------------------------

class TestPipeline:
    def test_search_then_filter_then_sort(self, users):
        result = process(
            users,
            search="a",
            filters=[FilterPredicate("age", "isNotNull")],
            sort=SortSpec("age", "desc"),
        )
        # "a" hits Alice, Charlie and Dalia; Charlie has no age.
        assert ids(result) == [1, 4]

    def test_input_is_not_mutated(self, users):
        before = list(users)
        process(users, sort=SortSpec("name", "desc"))
        assert users == before

    def test_paginate_bounds(self):
        rows = list(range(23))
        assert paginate(rows, 1, 10) == list(range(10))
        assert paginate(rows, 3, 10) == [20, 21, 22]
        assert paginate(rows, 4, 10) == []
        for page in range(1, 6):
            assert len(paginate(rows, page, 10)) <= 10

    def test_total_pages(self):
        assert total_pages(23, 10) == 3
        assert total_pages(0, 10) == 0
        assert total_pages(20, 10) == 2
