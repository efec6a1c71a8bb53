"""
Order diffing -- before/after comparison for purchase order edits.

``diff_lines`` classifies an incoming full line set against the stored one
by line identity:

    existing id  -> modify (only if some compared field actually changed)
    stored id absent from incoming -> remove
    no id        -> insert

Incoming ids that are not stored are reported in ``unknown_ids``; the
caller decides how to fail.  ``diff_fields`` produces the header
before/after map written to the order history.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class FieldChange:
    before: Any
    after: Any

    def as_dict(self) -> dict[str, Any]:
        return {"before": _jsonable(self.before), "after": _jsonable(self.after)}


@dataclass(frozen=True)
class LineModification:
    line_id: UUID
    changes: Mapping[str, FieldChange]


@dataclass(frozen=True)
class LineDiff:
    inserted: tuple[Mapping[str, Any], ...] = ()
    modified: tuple[LineModification, ...] = ()
    removed: tuple[UUID, ...] = ()
    unchanged: tuple[UUID, ...] = ()
    unknown_ids: tuple[UUID, ...] = ()

    @property
    def surviving_count(self) -> int:
        return len(self.inserted) + len(self.modified) + len(self.unchanged)

    @property
    def is_empty(self) -> bool:
        return not (self.inserted or self.modified or self.removed)

    def as_dict(self) -> dict[str, Any]:
        """JSON-ready form for the history record."""
        return {
            "inserted": [{k: _jsonable(v) for k, v in line.items()} for line in self.inserted],
            "modified": [
                {
                    "line_id": str(m.line_id),
                    "changes": {name: c.as_dict() for name, c in m.changes.items()},
                }
                for m in self.modified
            ],
            "removed": [str(line_id) for line_id in self.removed],
        }


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    return str(value)


def diff_fields(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> dict[str, FieldChange]:
    """Fields whose value differs between ``before`` and ``after``."""
    names = list(fields) if fields is not None else sorted(set(before) | set(after))
    return {
        name: FieldChange(before.get(name), after.get(name))
        for name in names
        if before.get(name) != after.get(name)
    }


def diff_lines(
    existing: Mapping[UUID, Mapping[str, Any]],
    incoming: Sequence[Mapping[str, Any]],
    compared_fields: Sequence[str],
) -> LineDiff:
    """
    Classify ``incoming`` against ``existing``.

    Args:
        existing: Stored lines keyed by id, each a mapping of field values.
        incoming: Replacement line set; an entry's ``id`` key (None or missing
            for new lines) identifies the stored line it replaces.
        compared_fields: Field names that count as a modification.
    """
    inserted: list[Mapping[str, Any]] = []
    modified: list[LineModification] = []
    unchanged: list[UUID] = []
    unknown: list[UUID] = []
    seen: set[UUID] = set()

    for line in incoming:
        line_id = line.get("id")
        if line_id is None:
            inserted.append(line)
            continue
        if line_id not in existing:
            unknown.append(line_id)
            continue
        seen.add(line_id)
        changes = diff_fields(existing[line_id], line, compared_fields)
        if changes:
            modified.append(LineModification(line_id=line_id, changes=changes))
        else:
            unchanged.append(line_id)

    removed = tuple(line_id for line_id in existing if line_id not in seen)

    return LineDiff(
        inserted=tuple(inserted),
        modified=tuple(modified),
        removed=removed,
        unchanged=tuple(unchanged),
        unknown_ids=tuple(unknown),
    )
