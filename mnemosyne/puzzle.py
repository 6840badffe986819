"""
Puzzle construction: turn a memorised scene into a set of targets.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from .config import MutationPolicy
from .geometry import Quaternion, random_unit_axis
from .registry import ObjectRegistry, ObjectStatus
from .sampler import PlacementSampler
from .surfaces import PlacementRegion

LOG = logging.getLogger(__name__)

DEFAULT_ANGLE_RANGE = (0.2 * math.pi, 0.8 * math.pi)


@dataclass(frozen=True)
class PuzzleResult:
    altered_ids: Tuple[str, ...]
    added_ids: Tuple[str, ...]

    @property
    def total_targets(self) -> int:
        return len(self.altered_ids) + len(self.added_ids)


def visible_rotation(
    rng: np.random.Generator,
    angle_range: Tuple[float, float] = DEFAULT_ANGLE_RANGE,
) -> Quaternion:
    """
    Random-axis rotation whose angle stays far enough from zero to be seen.
    """

    low, high = angle_range
    angle = float(rng.uniform(low, high)) if high > low else float(low)
    return Quaternion.from_axis_angle(random_unit_axis(rng), angle)


def build_puzzle(
    registry: ObjectRegistry,
    sampler: PlacementSampler,
    regions: Sequence[PlacementRegion],
    policy: MutationPolicy,
    rng: np.random.Generator,
    *,
    angle_range: Tuple[float, float] = DEFAULT_ANGLE_RANGE,
) -> PuzzleResult:
    """
    Rotate ``policy.alter_count`` distinct unchanged originals and place
    ``policy.add_count`` new objects. Shortfalls (too few originals or no
    surfaces) shrink the puzzle instead of failing.
    """

    unchanged = registry.with_status(ObjectStatus.ORIGINAL_UNCHANGED)
    alter_count = min(policy.alter_count, len(unchanged))
    if alter_count < policy.alter_count:
        LOG.warning(
            "Only %d of %d requested alterations possible; %d unchanged objects",
            alter_count,
            policy.alter_count,
            len(unchanged),
        )

    altered = []
    if alter_count:
        picks = rng.choice(len(unchanged), size=alter_count, replace=False)
        for index in sorted(int(i) for i in picks):
            object_id = unchanged[index].id
            registry.mutate(object_id, visible_rotation(rng, angle_range))
            registry.set_status(object_id, ObjectStatus.ORIGINAL_ALTERED)
            altered.append(object_id)

    added = [
        registry.add_object(transform, ObjectStatus.ADDED)
        for transform in sampler.sample(regions, policy.add_count)
    ]
    if len(added) < policy.add_count:
        LOG.warning("Placed %d of %d added objects", len(added), policy.add_count)

    return PuzzleResult(altered_ids=tuple(altered), added_ids=tuple(added))
