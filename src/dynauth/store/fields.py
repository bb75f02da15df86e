"""Field-set arithmetic for owner-tracked apply.

A document is flattened into *field paths*: tuples of dict keys, with
:class:`ListItem` elements addressing entries of associative lists
(lists of mappings keyed by ``name``, such as ``webhooks``).  Every
other list and every scalar is an atomic leaf.

Identity fields (``apiVersion``, ``kind``, ``metadata.name``,
``metadata.namespace``) and server-managed metadata never enter a
field set.
"""

from __future__ import annotations

import copy
from typing import Any, NamedTuple

MERGE_KEY = "name"

_IDENTITY_FIELDS = frozenset({"apiVersion", "kind"})
_SERVER_METADATA = frozenset(
    {
        "name",
        "namespace",
        "resourceVersion",
        "uid",
        "creationTimestamp",
    }
)

_MISSING = object()


class ListItem(NamedTuple):
    """Path element selecting the associative-list entry ``key == value``."""

    key: str
    value: str

    def __str__(self) -> str:
        return f"[{self.key}={self.value}]"


FieldPath = tuple[str | ListItem, ...]


def format_path(path: FieldPath) -> str:
    """Render *path* like ``webhooks[name=a].clientConfig.caBundle``."""
    out = ""
    for element in path:
        if isinstance(element, ListItem):
            out += str(element)
        else:
            out += f".{element}" if out else element
    return out


def _is_associative(value: Any) -> bool:  # noqa: ANN401
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, dict) and isinstance(item.get(MERGE_KEY), str) for item in value)
    )


def field_paths(obj: dict[str, Any]) -> set[FieldPath]:
    """Return the set of leaf paths set by *obj*, minus identity fields."""
    paths: set[FieldPath] = set()
    for key, value in obj.items():
        if key in _IDENTITY_FIELDS:
            continue
        if key == "metadata" and isinstance(value, dict):
            meta = {k: v for k, v in value.items() if k not in _SERVER_METADATA}
            paths |= _collect(meta, ("metadata",))
            continue
        paths |= _collect({key: value}, ())
    return paths


def _collect(obj: dict[str, Any], prefix: FieldPath) -> set[FieldPath]:
    paths: set[FieldPath] = set()
    for key, value in obj.items():
        path = (*prefix, key)
        if isinstance(value, dict) and value:
            paths |= _collect(value, path)
        elif _is_associative(value):
            for item in value:
                item_path = (*path, ListItem(MERGE_KEY, item[MERGE_KEY]))
                paths.add((*item_path, MERGE_KEY))
                rest = {k: v for k, v in item.items() if k != MERGE_KEY}
                paths |= _collect(rest, item_path)
        else:
            paths.add(path)
    return paths


def get_path(obj: Any, path: FieldPath) -> Any:  # noqa: ANN401
    """Return the value at *path*, or the module's missing sentinel."""
    current = obj
    for element in path:
        if isinstance(element, ListItem):
            if not isinstance(current, list):
                return _MISSING
            current = next(
                (i for i in current if isinstance(i, dict) and i.get(element.key) == element.value),
                _MISSING,
            )
        elif isinstance(current, dict):
            current = current.get(element, _MISSING)
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:  # noqa: ANN401
    return value is _MISSING


def set_path(obj: dict[str, Any], path: FieldPath, value: Any) -> None:  # noqa: ANN401
    """Set *value* at *path*, creating intermediate containers.

    Raises
    ------
    TypeError
        If an intermediate element exists with an incompatible type.

    """
    current: Any = obj
    for index, element in enumerate(path[:-1]):
        following = path[index + 1]
        if isinstance(element, ListItem):
            if not isinstance(current, list):
                msg = f"expected list before {element}"
                raise TypeError(msg)
            item = next(
                (i for i in current if isinstance(i, dict) and i.get(element.key) == element.value),
                None,
            )
            if item is None:
                item = {element.key: element.value}
                current.append(item)
            current = item
            continue
        if not isinstance(current, dict):
            msg = f"cannot set field {element!r} on {type(current).__name__}"
            raise TypeError(msg)
        default: Any = [] if isinstance(following, ListItem) else {}
        current = current.setdefault(element, default)

    last = path[-1]
    if isinstance(last, ListItem) or not isinstance(current, dict):
        msg = f"cannot set field {last!r} on {type(current).__name__}"
        raise TypeError(msg)
    current[last] = copy.deepcopy(value)


def delete_path(obj: dict[str, Any], path: FieldPath) -> None:
    """Remove the leaf at *path* and prune containers left empty.

    Deleting ``(..., ListItem, "name")`` removes the whole list entry.
    """
    if len(path) >= 2 and path[-1] == MERGE_KEY and isinstance(path[-2], ListItem):  # noqa: PLR2004
        parent = get_path(obj, path[:-2])
        if isinstance(parent, list):
            item = path[-2]
            parent[:] = [
                i for i in parent if not (isinstance(i, dict) and i.get(item.key) == item.value)
            ]
        _prune(obj, path[:-2])
        return

    parent = get_path(obj, path[:-1]) if len(path) > 1 else obj
    if isinstance(parent, dict):
        parent.pop(path[-1], None)
    _prune(obj, path[:-1])


def _prune(obj: dict[str, Any], path: FieldPath) -> None:
    while path:
        container = get_path(obj, path)
        if container is _MISSING or container:
            return
        parent = get_path(obj, path[:-1]) if len(path) > 1 else obj
        if isinstance(parent, dict) and not isinstance(path[-1], ListItem):
            parent.pop(path[-1], None)
        path = path[:-1]
