from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ParentType(str, Enum):
    COLLECTION = "collection"
    FOLDER = "folder"

    @classmethod
    def from_model_type(cls, value: Any, default: "ParentType | None" = None) -> "ParentType":
        """Map a Girder ``_modelType`` onto a parent kind.

        Unknown values fall back to ``default`` (folder if not given), since
        only collections and folders can hold children in the archive.
        """
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return default or cls.FOLDER


@dataclass(frozen=True)
class RemoteContainer:
    id: str
    name: str
    parent_id: str
    parent_type: ParentType
    model_type: ParentType

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        parent_id: str = "",
        parent_type: ParentType = ParentType.COLLECTION,
        kind: ParentType | None = None,
    ) -> "RemoteContainer":
        """Build a container from an archive payload.

        ``kind`` is the model type assumed when the payload omits ``_modelType``;
        it defaults to ``parent_type``.
        """
        if not isinstance(payload, dict) or not payload.get("_id"):
            raise ValueError(f"invalid_container_payload: {payload!r}"[:200])
        model_type = ParentType.from_model_type(payload.get("_modelType"), default=kind or parent_type)
        return cls(
            id=str(payload["_id"]),
            name=str(payload.get("name") or ""),
            parent_id=str(payload.get("parentId") or parent_id or ""),
            parent_type=ParentType.from_model_type(payload.get("parentCollection"), default=parent_type),
            model_type=model_type,
        )


@dataclass(frozen=True)
class RemoteItem:
    id: str
    name: str
    parent_id: str

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RemoteItem":
        if not isinstance(payload, dict) or not payload.get("_id"):
            raise ValueError(f"invalid_item_payload: {payload!r}"[:200])
        return cls(
            id=str(payload["_id"]),
            name=str(payload.get("name") or ""),
            parent_id=str(payload.get("folderId") or ""),
        )


@dataclass(frozen=True)
class SyncContext:
    """Where the entries of one local directory land remotely."""

    parent_id: str
    parent_type: ParentType
    is_root_level: bool = False

    def child(self, container: RemoteContainer) -> "SyncContext":
        return SyncContext(parent_id=container.id, parent_type=container.model_type, is_root_level=False)
