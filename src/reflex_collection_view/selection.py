"""Selection tracking by entity identifier.

The pure functions operate on frozensets and are what the view-state
reducer uses; :class:`SelectionTracker` wraps them for standalone use.
Selected *entities* are never stored: they are recomputed from the
current data on every read, so a refresh that swaps the underlying
objects cannot leave stale references behind.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from reflex_collection_view.models import EntityId
from reflex_collection_view.paths import entity_id


def select_id(
    selected: frozenset[EntityId],
    item_id: EntityId,
    *,
    multi_select: bool,
    max_selections: int | None = None,
) -> frozenset[EntityId]:
    """Add *item_id*; in single-select mode it replaces the whole set."""
    if item_id in selected and (multi_select or len(selected) == 1):
        return selected
    if not multi_select:
        return frozenset({item_id})
    if max_selections is not None and len(selected) >= max_selections:
        return selected
    return selected | {item_id}


def deselect_id(selected: frozenset[EntityId], item_id: EntityId) -> frozenset[EntityId]:
    if item_id not in selected:
        return selected
    return selected - {item_id}


def toggle_id(
    selected: frozenset[EntityId],
    item_id: EntityId,
    *,
    multi_select: bool,
    max_selections: int | None = None,
) -> frozenset[EntityId]:
    if item_id in selected:
        return deselect_id(selected, item_id)
    return select_id(selected, item_id, multi_select=multi_select, max_selections=max_selections)


def select_all_ids(
    selected: frozenset[EntityId],
    visible_ids: Iterable[EntityId],
    *,
    multi_select: bool,
    max_selections: int | None = None,
) -> frozenset[EntityId]:
    """Select exactly the currently visible ids.

    Rows hidden by search, filters or paging are never selected.  A no-op
    in single-select mode, or when the visible set exceeds
    *max_selections*.
    """
    if not multi_select:
        return selected
    visible = frozenset(visible_ids)
    if max_selections is not None and len(visible) > max_selections:
        return selected
    return visible


def selected_entities(
    entities: Sequence[Any],
    selected: Iterable[EntityId],
    id_field: str = "id",
) -> list[Any]:
    """Return the entities of *entities* whose id is selected, in data order.

    Ids with no matching entity are skipped here but stay selected.
    """
    wanted = selected if isinstance(selected, (set, frozenset)) else set(selected)
    return [e for e in entities if entity_id(e, id_field) in wanted]


class SelectionTracker:
    """Mutable selection set for a single collection."""

    def __init__(
        self,
        selected_ids: Iterable[EntityId] = (),
        *,
        multi_select: bool = False,
        max_selections: int | None = None,
    ) -> None:
        self.multi_select = multi_select
        self.max_selections = max_selections
        self.selected_ids: frozenset[EntityId] = frozenset(selected_ids)

    def __len__(self) -> int:
        return len(self.selected_ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self.selected_ids

    def is_selected(self, item_id: EntityId) -> bool:
        return item_id in self.selected_ids

    def select(self, item_id: EntityId) -> frozenset[EntityId]:
        self.selected_ids = select_id(
            self.selected_ids, item_id,
            multi_select=self.multi_select, max_selections=self.max_selections,
        )
        return self.selected_ids

    def deselect(self, item_id: EntityId) -> frozenset[EntityId]:
        self.selected_ids = deselect_id(self.selected_ids, item_id)
        return self.selected_ids

    def toggle(self, item_id: EntityId, multi_select: bool | None = None) -> frozenset[EntityId]:
        """Flip *item_id*; *multi_select* overrides the tracker's mode for this call."""
        multi = self.multi_select if multi_select is None else multi_select
        self.selected_ids = toggle_id(
            self.selected_ids, item_id,
            multi_select=multi, max_selections=self.max_selections,
        )
        return self.selected_ids

    def select_all(self, visible_ids: Iterable[EntityId]) -> frozenset[EntityId]:
        self.selected_ids = select_all_ids(
            self.selected_ids, visible_ids,
            multi_select=self.multi_select, max_selections=self.max_selections,
        )
        return self.selected_ids

    def clear(self) -> frozenset[EntityId]:
        self.selected_ids = frozenset()
        return self.selected_ids

    def selected_entities(self, entities: Sequence[Any], id_field: str = "id") -> list[Any]:
        return selected_entities(entities, self.selected_ids, id_field)
