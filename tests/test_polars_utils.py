"""Tests for the polars LazyFrame backend."""

import logging
from datetime import date, datetime

import polars as pl
import pytest

from reflex_collection_view.models import FilterPredicate, PaginationWindow, SortSpec
from reflex_collection_view.pipeline import filter_entities, process, sort_entities
from reflex_collection_view.polars_utils import (
    LazyFrameSource,
    _dataframe_to_dicts,
    apply_ordering,
    build_column_defs_from_schema,
    build_lookup_expr,
    polars_dtype_to_grid_type,
    scan_file,
)
from reflex_collection_view.translator import translate


def ids(rows):
    return [row["id"] for row in rows]


@pytest.fixture
def source(users) -> LazyFrameSource:
    return LazyFrameSource(pl.LazyFrame(users))


@pytest.fixture
def numbered() -> LazyFrameSource:
    lf = pl.LazyFrame({"id": list(range(1, 26)), "flag": [i % 2 == 0 for i in range(1, 26)]})
    return LazyFrameSource(lf)


def remote_ids(source: LazyFrameSource, **query) -> list:
    params = translate(pagination=PaginationWindow(1, 100), **query)
    return ids(source(params).data)


# ---------------------------------------------------------------------------
# Parity with the local pipeline
# ---------------------------------------------------------------------------

class TestParity:
    @pytest.mark.parametrize(
        "predicate",
        [
            FilterPredicate("role", "equals", "admin"),
            FilterPredicate("role", "notEquals", "admin"),
            FilterPredicate("name", "contains", "LI"),
            FilterPredicate("name", "notContains", "li"),
            FilterPredicate("name", "startsWith", "c"),
            FilterPredicate("name", "endsWith", "A"),
            FilterPredicate("age", "greaterThan", 30),
            FilterPredicate("age", "greaterThanOrEqual", "30"),
            FilterPredicate("age", "lessThan", 30),
            FilterPredicate("age", "lessThanOrEqual", 30),
            FilterPredicate("age", "between", [18, 30]),
            FilterPredicate("age", "isNull"),
            FilterPredicate("age", "isNotNull"),
            FilterPredicate("role", "in", ["admin", "editor"]),
            FilterPredicate("role", "notIn", ["admin", "editor"]),
            FilterPredicate("role", "equals", None),
            FilterPredicate("role", "notEquals", None),
            FilterPredicate("role", "in", "admin"),
            FilterPredicate("role", "notIn", "admin"),
            FilterPredicate("age", "between", [None, 30]),
            FilterPredicate("age", "between", [18]),
            FilterPredicate("age", "greaterThan", "abc"),
            FilterPredicate("name", "contains", None),
            FilterPredicate("name", "notContains", None),
        ],
        ids=lambda p: f"{p.field}-{p.operator}-{p.value!r}",
    )
    def test_filter_operator(self, users, source, predicate):
        assert remote_ids(source, filters=[predicate]) == ids(filter_entities(users, [predicate]))

    def test_search(self, users, source):
        assert remote_ids(source, search="ALI") == ids(process(users, search="ALI")) == [1, 4]

    @pytest.mark.parametrize("direction", ["asc", "desc"])
    def test_sort_nulls_last(self, users, source, direction):
        sort = SortSpec("age", direction)
        assert remote_ids(source, sort=sort) == ids(sort_entities(users, sort))

    def test_combined_query(self, users, source):
        query = {
            "search": "a",
            "filters": [FilterPredicate("age", "isNotNull")],
            "sort": SortSpec("age", "desc"),
        }
        assert remote_ids(source, **query) == ids(process(users, **query)) == [1, 4]


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------

class TestPaging:
    def test_first_page_has_more(self, numbered):
        response = numbered({"page": 1, "page_size": 10})
        assert ids(response.data) == list(range(1, 11))
        assert response.total == 25
        assert response.has_more is True

    def test_last_page(self, numbered):
        response = numbered({"page": 3, "page_size": 10})
        assert ids(response.data) == [21, 22, 23, 24, 25]
        assert response.has_more is False

    def test_total_is_filtered_count(self, numbered):
        response = numbered({"flag": True, "page": 1, "page_size": 5})
        assert response.total == 12
        assert ids(response.data) == [2, 4, 6, 8, 10]
        assert numbered.count({"flag": "false"}) == 13

    def test_row_index_offset(self):
        source = LazyFrameSource(pl.LazyFrame({"name": [f"n{i}" for i in range(30)]}), row_id_field="__row_id__")
        rows = source({"page": 2, "page_size": 10}).data
        assert rows[0]["__row_id__"] == 10
        assert rows[-1]["__row_id__"] == 19

    def test_defaults_without_paging_params(self, numbered):
        assert len(numbered({}).data) == 10


# ---------------------------------------------------------------------------
# Lookup parsing
# ---------------------------------------------------------------------------

class TestLookups:
    def test_unknown_column_is_ignored(self, users, source, caplog):
        with caplog.at_level(logging.WARNING, logger="reflex_collection_view.polars_utils"):
            response = source({"nickname": "x"})
        assert response.total == len(users)
        assert "nickname" in caplog.text

    def test_field_names_are_case_insensitive(self, source):
        assert ids(source({"ROLE": "admin"}).data) == [1, 4]

    def test_string_bounds_are_coerced(self, source):
        assert ids(source({"age__gt": "30"}).data) == [1, 5]

    def test_non_numeric_bound_matches_nothing(self, source):
        assert source({"age__gt": "old"}).total == 0
        assert source({"exclude__age__gt": "old"}).total == 6

    def test_empty_membership_matches_nothing(self, source):
        assert source({"role__in": []}).total == 0
        assert source({"age__in": ""}).total == 0

    def test_unparseable_null_test_is_skipped(self):
        schema = pl.Schema({"age": pl.Int64()})
        assert build_lookup_expr("age__isnull", "maybe", schema) is None

    def test_comma_separated_membership(self, source):
        assert ids(source({"role__in": "admin,viewer"}).data) == [1, 3, 4, 6]

    def test_custom_exclude_prefix(self, users):
        source = LazyFrameSource(pl.LazyFrame(users), exclude_prefix="not__")
        assert ids(source({"not__role": "admin"}).data) == [2, 3, 5, 6]

    def test_search_columns(self, users):
        source = LazyFrameSource(pl.LazyFrame(users), search_columns=["role"])
        assert ids(source({"search": "ali"}).data) == []
        assert ids(source({"search": "edit"}).data) == [2]

    def test_unknown_ordering_is_ignored(self, source):
        lf = apply_ordering(source.lf, "-nickname", source.schema)
        assert lf.collect()["id"].to_list() == [1, 2, 3, 4, 5, 6]


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------

class TestSchema:
    @pytest.mark.parametrize(
        "dtype, expected",
        [
            (pl.Int32(), "number"),
            (pl.Float64(), "number"),
            (pl.Boolean(), "boolean"),
            (pl.Date(), "date"),
            (pl.Datetime("us"), "dateTime"),
            (pl.Categorical(), "singleSelect"),
            (pl.Enum(["a", "b"]), "singleSelect"),
            (pl.String(), "string"),
            (pl.List(pl.String), "string"),
        ],
    )
    def test_dtype_mapping(self, dtype, expected):
        assert polars_dtype_to_grid_type(dtype) == expected

    def test_column_defs(self):
        schema = pl.Schema({"id": pl.Int64(), "name": pl.String(), "born": pl.Date()})
        defs = build_column_defs_from_schema(
            schema, column_descriptions={"born": "Date of birth"}, id_field="id"
        )
        assert [c.key for c in defs] == ["id", "name", "born"]
        assert [c.visible for c in defs] == [False, True, True]
        assert defs[2].type == "date"
        assert defs[2].description == "Date of birth"
        assert [c.order for c in defs] == [0, 1, 2]

    def test_show_id_field(self):
        schema = pl.Schema({"id": pl.Int64()})
        assert build_column_defs_from_schema(schema, id_field="id", show_id_field=True)[0].visible

    def test_temporal_values_become_strings(self):
        df = pl.DataFrame(
            {"d": [date(2024, 1, 31)], "ts": [datetime(2024, 1, 31, 12, 30)], "tags": [["a", "b"]]}
        )
        row = _dataframe_to_dicts(df)[0]
        assert row["d"] == "2024-01-31"
        assert row["ts"].startswith("2024-01-31 12:30")
        assert row["tags"] == ["a", "b"]


# ---------------------------------------------------------------------------
# File scanning
# ---------------------------------------------------------------------------

class TestScanFile:
    def test_csv(self, tmp_path):
        path = tmp_path / "people.csv"
        pl.DataFrame({"id": [1, 2], "name": ["Amy", "Bob"]}).write_csv(path)
        assert scan_file(path).collect()["name"].to_list() == ["Amy", "Bob"]

    def test_parquet(self, tmp_path):
        path = tmp_path / "people.parquet"
        pl.DataFrame({"id": [1, 2]}).write_parquet(path)
        assert scan_file(path).select(pl.len()).collect().item() == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            scan_file(tmp_path / "nope.csv")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "people.xlsx"
        path.write_bytes(b"")
        with pytest.raises(ValueError, match="Unsupported file extension"):
            scan_file(path)
