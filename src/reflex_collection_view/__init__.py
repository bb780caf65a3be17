"""reflex-collection-view – search, filter, sort, page and select collections of entities.

The same query runs in memory (client mode) or is translated into remote
list parameters (server mode)::

    pip install reflex-collection-view

A polars ``LazyFrame`` can serve as the remote side, and
:class:`CollectionViewMixin` binds a view to Reflex state.
"""

from reflex_collection_view.models import (
    ColumnDef,
    FilterOperator,
    FilterPredicate,
    ListResponse,
    PaginationWindow,
    SortSpec,
    filter_item_to_predicate,
    pagination_model_to_window,
    predicate_to_filter_item,
    sort_model_to_spec,
    sort_spec_to_model,
)
from reflex_collection_view.paths import entity_id, resolve_path
from reflex_collection_view.pipeline import paginate, process, total_pages
from reflex_collection_view.polars_utils import (
    LazyFrameSource,
    build_column_defs_from_schema,
    polars_dtype_to_grid_type,
    scan_file,
)
from reflex_collection_view.selection import SelectionTracker
from reflex_collection_view.state import (
    CollectionViewMixin,
    apply_filter_model,
    apply_pagination_model,
    collection_view,
    lazyframe_view,
    view_snapshot,
)
from reflex_collection_view.synchronizer import Synchronizer, ViewState, reduce
from reflex_collection_view.translator import (
    NegationMode,
    UnsupportedOperatorError,
    build_query_string,
    normalize_list_response,
    translate,
)
from reflex_collection_view.view import CollectionView
