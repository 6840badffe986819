"""
Tracked objects of the current round.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from .geometry import Quaternion, Transform

LOG = logging.getLogger(__name__)


class ObjectStatus(str, Enum):
    ORIGINAL_UNCHANGED = "originalUnchanged"
    ORIGINAL_ALTERED = "originalAltered"
    ADDED = "added"

    @property
    def is_target(self) -> bool:
        return self is not ObjectStatus.ORIGINAL_UNCHANGED


class UnknownObjectError(KeyError):
    """Raised when an object id is not present in the registry."""


@dataclass(frozen=True)
class TrackedObject:
    id: str
    transform: Transform
    status: ObjectStatus = ObjectStatus.ORIGINAL_UNCHANGED
    resolved: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transform": self.transform.to_dict(),
            "status": self.status.value,
            "resolved": self.resolved,
        }


class ObjectRegistry:
    """
    Owns every tracked object of a round.

    Entries are immutable records replaced on mutation; ``revision`` increases
    with every change so a renderer can skip unchanged mirroring passes. Ids
    come from ``uuid4`` and are never handed out twice.
    """

    def __init__(self) -> None:
        self._objects: Dict[str, TrackedObject] = {}
        self._visible = True
        self.revision = 0

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._objects

    @property
    def visible(self) -> bool:
        return self._visible

    @visible.setter
    def visible(self, value: bool) -> None:
        value = bool(value)
        if value != self._visible:
            self._visible = value
            self._bump()

    def _bump(self) -> None:
        self.revision += 1

    def add_object(self, transform: Transform, status: ObjectStatus = ObjectStatus.ORIGINAL_UNCHANGED) -> str:
        object_id = uuid.uuid4().hex
        while object_id in self._objects:  # pragma: no cover - uuid4 collision
            object_id = uuid.uuid4().hex
        self._objects[object_id] = TrackedObject(id=object_id, transform=transform, status=ObjectStatus(status))
        self._bump()
        return object_id

    def get(self, object_id: str) -> TrackedObject:
        try:
            return self._objects[object_id]
        except KeyError:
            raise UnknownObjectError(object_id) from None

    def mutate(self, object_id: str, orientation_delta: Quaternion) -> TrackedObject:
        """
        Compose ``orientation_delta`` onto the object's orientation.
        """

        current = self.get(object_id)
        updated = replace(current, transform=current.transform.rotated_by(orientation_delta))
        self._objects[object_id] = updated
        self._bump()
        return updated

    def set_status(self, object_id: str, status: ObjectStatus) -> TrackedObject:
        updated = replace(self.get(object_id), status=ObjectStatus(status))
        self._objects[object_id] = updated
        self._bump()
        return updated

    def mark_resolved(self, object_id: str) -> TrackedObject:
        current = self.get(object_id)
        if current.resolved:
            return current
        updated = replace(current, resolved=True)
        self._objects[object_id] = updated
        self._bump()
        return updated

    def find(self, predicate: Callable[[TrackedObject], bool]) -> Optional[str]:
        for tracked in self._objects.values():
            if predicate(tracked):
                return tracked.id
        return None

    def all(self) -> List[TrackedObject]:
        return list(self._objects.values())

    def with_status(self, status: ObjectStatus) -> List[TrackedObject]:
        return [tracked for tracked in self._objects.values() if tracked.status is status]

    def clear(self) -> None:
        self._objects.clear()
        self._visible = True
        self._bump()
