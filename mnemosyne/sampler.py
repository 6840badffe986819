"""
Random object placement over detected surfaces.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .geometry import Transform, yaw_rotation
from .surfaces import PlacementRegion

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    region: PlacementRegion
    local_offset: tuple
    transform: Transform


class PlacementSampler:
    """
    Draws world transforms uniformly over a set of rectangular regions.

    Each sample picks a region uniformly (not area weighted), a point uniformly
    inside its extent, and a yaw uniformly in ``[0, 2*pi)`` about the surface
    normal. Samples may overlap.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None) -> None:
        self.rng = rng if rng is not None else np.random.default_rng()

    def sample_placements(self, regions: Sequence[PlacementRegion], count: int) -> List[Placement]:
        candidates = list(regions)
        count = max(0, int(count))
        if not candidates or count == 0:
            if count:
                LOG.warning("No placement surfaces available; %d placements skipped", count)
            return []

        placements: List[Placement] = []
        for _ in range(count):
            region = candidates[int(self.rng.integers(len(candidates)))]
            x = float(self.rng.uniform(-region.width / 2, region.width / 2)) if region.width else 0.0
            z = float(self.rng.uniform(-region.depth / 2, region.depth / 2)) if region.depth else 0.0
            yaw = float(self.rng.uniform(0.0, 2.0 * math.pi))
            local = Transform(position=(x, 0.0, z), rotation=yaw_rotation(yaw))
            placements.append(
                Placement(region=region, local_offset=(x, 0.0, z), transform=region.transform.compose(local))
            )
        return placements

    def sample(self, regions: Sequence[PlacementRegion], count: int) -> List[Transform]:
        return [placement.transform for placement in self.sample_placements(regions, count)]
