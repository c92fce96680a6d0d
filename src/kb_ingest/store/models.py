"""Data models exchanged with point-store backends."""

from __future__ import annotations

import copy
from typing import Any, Literal

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative payload filter for point-store queries.

    Attributes
    ----------
    field:
        Dotted payload path to filter on (e.g. ``"doc.source_id"``).
    operator:
        Comparison operator: one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    def matches(self, payload: dict[str, Any]) -> bool:
        """Evaluate the filter against a nested *payload* in memory."""
        actual = get_path(payload, self.field)
        if self.operator == "eq":
            return actual == self.value
        if self.operator == "ne":
            return actual != self.value
        if self.operator == "in":
            return actual in self.value
        if self.operator == "nin":
            return actual not in self.value
        if actual is None:
            return False
        if self.operator == "gt":
            return actual > self.value
        if self.operator == "gte":
            return actual >= self.value
        if self.operator == "lt":
            return actual < self.value
        if self.operator == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator: {self.operator!r}")


class OrderBy(BaseModel):
    key: str
    direction: Literal["asc", "desc"] = "asc"


class Point(BaseModel):
    """One stored vector with its payload."""

    id: str
    vector: list[float] | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class PayloadPatch(BaseModel):
    """Partial payload update for one point.

    Keys may be dotted paths (``"editor.position"``) to update a nested
    field without touching its siblings.
    """

    id: str
    payload: dict[str, Any]


class ScrollResult(BaseModel):
    points: list[Point] = Field(default_factory=list)
    next_offset: int | None = None


# ── payload path helpers ───────────────────────────────────────────────


def get_path(payload: dict[str, Any], path: str) -> Any:
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def apply_patch(payload: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *payload* with the (possibly dotted) *patch* keys set."""
    result = copy.deepcopy(payload)
    for path, value in patch.items():
        node = result
        *parents, leaf = path.split(".")
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = copy.deepcopy(value)
    return result


def flatten_payload(payload: dict[str, Any], prefix: str = "") -> dict[str, str | int | float | bool]:
    """Dotted-key view of the scalar leaves of *payload*.

    Lists, dicts and ``None`` values are left out.
    """
    flat: dict[str, str | int | float | bool] = {}
    for key, value in payload.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten_payload(value, f"{path}."))
        elif isinstance(value, (str, int, float, bool)):
            flat[path] = value
    return flat
