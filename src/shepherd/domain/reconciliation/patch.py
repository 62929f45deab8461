"""Structural diff and patch over attribute trees (RFC 6901 pointers, RFC 6902 ops)."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING

from .contracts import PatchOp, PatchOperation

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from shepherd.domain.model import Attributes, AttributeValue


def diff(observed: Attributes, desired: Attributes) -> tuple[PatchOperation, ...]:
    """Ordered add/remove/replace operations turning ``observed`` into ``desired``.

    Mapping keys are visited in sorted order so the result does not depend on
    insertion order. Lists of equal length are compared element-wise; a length
    change replaces the whole list.
    """

    operations: list[PatchOperation] = []
    _diff_mapping(observed, desired, "", operations)
    return tuple(operations)


def apply_patch(attributes: Attributes, patch: Iterable[PatchOperation]) -> Attributes:
    """Return a patched deep copy of ``attributes``."""

    document: AttributeValue = copy.deepcopy(attributes)
    for operation in patch:
        document = _apply_one(document, operation)
    if not isinstance(document, dict):
        raise ValueError("Patch replaced the attribute root with a non-mapping value")
    return document


def pointer(parts: Sequence[str | int]) -> str:
    return "".join("/" + _escape(str(part)) for part in parts)


def split_pointer(path: str) -> list[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise ValueError(f"Invalid JSON pointer: {path!r}")
    return [_unescape(part) for part in path[1:].split("/")]


def same_value(left: AttributeValue, right: AttributeValue) -> bool:
    """Equality that keeps ``True`` and ``1`` (and ``1`` and ``1.0``) apart."""

    if type(left) is not type(right):
        return False
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(
            same_value(value, right[key]) for key, value in left.items()
        )
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(
            same_value(a, b) for a, b in zip(left, right, strict=True)
        )
    return left == right


def _diff_mapping(
    observed: dict[str, AttributeValue],
    desired: dict[str, AttributeValue],
    prefix: str,
    operations: list[PatchOperation],
) -> None:
    for key in sorted(observed.keys() | desired.keys()):
        path = f"{prefix}/{_escape(key)}"
        if key not in desired:
            operations.append(PatchOperation(PatchOp.REMOVE, path))
        elif key not in observed:
            operations.append(PatchOperation(PatchOp.ADD, path, copy.deepcopy(desired[key])))
        else:
            _diff_value(observed[key], desired[key], path, operations)


def _diff_value(
    observed: AttributeValue,
    desired: AttributeValue,
    path: str,
    operations: list[PatchOperation],
) -> None:
    if same_value(observed, desired):
        return
    if isinstance(observed, dict) and isinstance(desired, dict):
        _diff_mapping(observed, desired, path, operations)
        return
    if isinstance(observed, list) and isinstance(desired, list) and len(observed) == len(desired):
        for index, (old, new) in enumerate(zip(observed, desired, strict=True)):
            _diff_value(old, new, f"{path}/{index}", operations)
        return
    operations.append(PatchOperation(PatchOp.REPLACE, path, copy.deepcopy(desired)))


def _apply_one(document: AttributeValue, operation: PatchOperation) -> AttributeValue:
    parts = split_pointer(operation.path)
    if not parts:
        if operation.op is PatchOp.REMOVE:
            raise ValueError("Cannot remove the document root")
        return copy.deepcopy(operation.value)

    parent = document
    for part in parts[:-1]:
        parent = _child(parent, part, operation.path)
    last = parts[-1]
    value = copy.deepcopy(operation.value)

    if isinstance(parent, dict):
        if operation.op is PatchOp.ADD:
            parent[last] = value
        elif last not in parent:
            raise ValueError(f"Patch path does not exist: {operation.path}")
        elif operation.op is PatchOp.REMOVE:
            del parent[last]
        else:
            parent[last] = value
    elif isinstance(parent, list):
        if operation.op is PatchOp.ADD and last == "-":
            parent.append(value)
            return document
        index = _index(last, operation.path)
        bound = len(parent) + 1 if operation.op is PatchOp.ADD else len(parent)
        if not 0 <= index < bound:
            raise ValueError(f"Patch index out of range: {operation.path}")
        if operation.op is PatchOp.ADD:
            parent.insert(index, value)
        elif operation.op is PatchOp.REMOVE:
            del parent[index]
        else:
            parent[index] = value
    else:
        raise ValueError(f"Patch path does not address a container: {operation.path}")
    return document


def _child(container: AttributeValue, part: str, path: str) -> AttributeValue:
    if isinstance(container, dict):
        if part not in container:
            raise ValueError(f"Patch path does not exist: {path}")
        return container[part]
    if isinstance(container, list):
        index = _index(part, path)
        if not 0 <= index < len(container):
            raise ValueError(f"Patch index out of range: {path}")
        return container[index]
    raise ValueError(f"Patch path does not address a container: {path}")


def _index(part: str, path: str) -> int:
    if not part.isdigit():
        raise ValueError(f"Invalid list index in patch path: {path}")
    return int(part)


def _escape(part: str) -> str:
    return part.replace("~", "~0").replace("/", "~1")


def _unescape(part: str) -> str:
    return part.replace("~1", "/").replace("~0", "~")
