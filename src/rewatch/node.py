"""Per-file record of dependency edges in the module map.

Nodes refer to each other by filename only; the module map is the arena that
owns every node and keeps ``children``/``parents`` symmetric.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from rewatch.types import NodeData


@dataclasses.dataclass(eq=False)
class Node:
    filename: str
    children: set[str] = dataclasses.field(default_factory=set)
    parents: set[str] = dataclasses.field(default_factory=set)
    entry_files: set[str] = dataclasses.field(default_factory=set)

    @classmethod
    def create(
        cls,
        filename: str,
        *,
        children: Iterable[str] = (),
        parents: Iterable[str] = (),
        entry_files: Iterable[str] = (),
    ) -> Node:
        return cls(
            filename=filename,
            children=set(children),
            parents=set(parents),
            entry_files=set(entry_files),
        )

    @classmethod
    def from_dict(cls, data: NodeData) -> Node:
        return cls.create(
            data["filename"],
            children=data.get("children", ()),
            parents=data.get("parents", ()),
            entry_files=data.get("entry_files", ()),
        )

    def to_dict(self) -> NodeData:
        """Stable representation: every set is sorted."""
        return {
            "filename": self.filename,
            "entry_files": sorted(self.entry_files),
            "children": sorted(self.children),
            "parents": sorted(self.parents),
        }

    def __str__(self) -> str:
        return (
            f"{self.filename} (children={len(self.children)}, parents={len(self.parents)}, "
            + f"entry_files={len(self.entry_files)})"
        )
