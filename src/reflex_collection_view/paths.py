"""Field access by dotted key path."""

from collections.abc import Mapping
from typing import Any

_DEFAULT_ID_FIELD: str = "id"


def resolve_path(entity: Any, path: str) -> Any:
    """Read a (possibly nested) field from *entity*.

    Each dot-separated step is looked up by key on mappings and by
    attribute on any other object.  A missing step at any depth yields
    ``None``, so callers never see ``KeyError``/``AttributeError``.

    Examples:
        ``resolve_path({"user": {"name": "Amy"}}, "user.name")`` -> ``"Amy"``
        ``resolve_path({"user": None}, "user.name")`` -> ``None``
    """
    value: Any = entity
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def entity_id(entity: Any, id_field: str = _DEFAULT_ID_FIELD) -> Any:
    """Return the identifier of *entity*."""
    return resolve_path(entity, id_field)
