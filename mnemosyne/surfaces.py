"""
Placement surfaces reported by the host's plane detection.

The engine never detects planes itself; the host pushes anchor updates into a
:class:`SurfaceRegistry` and the round machine reads a snapshot of the
placeable regions when it sets up a scene and again when it builds the puzzle.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .geometry import Transform, Vector3

LOG = logging.getLogger(__name__)


class SurfaceClassification(str, Enum):
    FLOOR = "floor"
    TABLE = "table"
    SEAT = "seat"
    WALL = "wall"
    CEILING = "ceiling"
    DOOR = "door"
    WINDOW = "window"
    UNKNOWN = "unknown"


NON_PLACEABLE = frozenset(
    {
        SurfaceClassification.WALL,
        SurfaceClassification.CEILING,
        SurfaceClassification.DOOR,
        SurfaceClassification.WINDOW,
    }
)


class SurfaceEvent(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class PlacementRegion:
    """
    A flat rectangle centred on ``transform``; ``width`` spans local X and
    ``depth`` spans local Z.
    """

    id: str
    transform: Transform = field(default_factory=Transform)
    width: float = 0.0
    depth: float = 0.0
    classification: SurfaceClassification = SurfaceClassification.UNKNOWN

    def __post_init__(self) -> None:
        for name in ("width", "depth"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0.0:
                raise ValueError(f"{name} must be a finite non-negative number, got {value!r}")
            object.__setattr__(self, name, value)
        object.__setattr__(self, "classification", SurfaceClassification(self.classification))

    @property
    def is_placeable(self) -> bool:
        return self.classification not in NON_PLACEABLE

    def to_local(self, point: Sequence[float]) -> Vector3:
        return self.transform.inverse_apply(point)

    def contains_local(self, point: Sequence[float], *, tolerance: float = 1e-6) -> bool:
        """True when ``point`` (local frame) lies within the rectangle."""

        x, _, z = point
        return abs(x) <= self.width / 2 + tolerance and abs(z) <= self.depth / 2 + tolerance

    def contains(self, world_point: Sequence[float], *, tolerance: float = 1e-6) -> bool:
        local = self.to_local(world_point)
        return self.contains_local(local, tolerance=tolerance) and abs(local[1]) <= tolerance

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transform": self.transform.to_dict(),
            "width": self.width,
            "depth": self.depth,
            "classification": self.classification.value,
        }


class SurfaceSource(Protocol):
    def current_regions(self) -> Sequence[PlacementRegion]:
        ...


class SurfaceRegistry:
    """
    In-memory :class:`SurfaceSource` fed by anchor add/update/remove events.
    """

    def __init__(self) -> None:
        self._regions: Dict[str, PlacementRegion] = {}
        self._has_found = False
        self._observer_counter = 0
        self._observers: Dict[int, Callable[[int], None]] = {}

    def __len__(self) -> int:
        return len(self._regions)

    @property
    def has_found_surfaces(self) -> bool:
        return self._has_found

    def get(self, region_id: str) -> Optional[PlacementRegion]:
        return self._regions.get(region_id)

    def all_regions(self) -> List[PlacementRegion]:
        return list(self._regions.values())

    def current_regions(self) -> List[PlacementRegion]:
        return [region for region in self._regions.values() if region.is_placeable]

    def apply(self, event: SurfaceEvent | str, region: PlacementRegion) -> bool:
        """
        Apply one anchor update. Returns whether the registry changed.
        """

        kind = SurfaceEvent(event)
        if kind is SurfaceEvent.ADDED:
            self._regions[region.id] = region
            self._has_found = True
        elif kind is SurfaceEvent.UPDATED:
            if region.id not in self._regions:
                LOG.debug("Ignoring update for unknown surface %s", region.id)
                return False
            self._regions[region.id] = region
        else:
            if self._regions.pop(region.id, None) is None:
                return False
        LOG.debug("Surface %s %s; %d regions tracked", region.id, kind.value, len(self._regions))
        self._notify()
        return True

    def add(self, region: PlacementRegion) -> bool:
        return self.apply(SurfaceEvent.ADDED, region)

    def update(self, region: PlacementRegion) -> bool:
        return self.apply(SurfaceEvent.UPDATED, region)

    def remove(self, region_id: str) -> bool:
        region = self._regions.get(region_id)
        if region is None:
            return False
        return self.apply(SurfaceEvent.REMOVED, region)

    def clear(self) -> None:
        self._regions.clear()
        self._has_found = False
        self._notify()

    def subscribe(self, callback: Callable[[int], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    def _notify(self) -> None:
        count = len(self._regions)
        for token, callback in list(self._observers.items()):
            try:
                callback(count)
            except Exception:  # pragma: no cover - observer failures stay local
                LOG.exception("Surface observer %s failed.", token)


class StaticSurfaces:
    """Fixed region list, for hosts without live plane detection."""

    def __init__(self, regions: Sequence[PlacementRegion] = ()) -> None:
        self.regions = list(regions)

    def current_regions(self) -> List[PlacementRegion]:
        return list(self.regions)
