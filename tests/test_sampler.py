import math

import numpy as np
import pytest

from mnemosyne.geometry import Quaternion, Transform
from mnemosyne.sampler import PlacementSampler
from mnemosyne.surfaces import PlacementRegion, SurfaceClassification


def angled_table() -> PlacementRegion:
    return PlacementRegion(
        id="table",
        transform=Transform(
            position=(1.0, 0.75, -1.5),
            rotation=Quaternion.from_axis_angle((0.0, 1.0, 0.0), math.radians(35)),
        ),
        width=1.2,
        depth=0.6,
        classification=SurfaceClassification.TABLE,
    )


def test_no_regions_yields_nothing() -> None:
    sampler = PlacementSampler(np.random.default_rng(0))

    assert sampler.sample([], 4) == []


def test_zero_count_yields_nothing() -> None:
    sampler = PlacementSampler(np.random.default_rng(0))

    assert sampler.sample([angled_table()], 0) == []


def test_samples_lie_within_their_region() -> None:
    sampler = PlacementSampler(np.random.default_rng(5))
    region = angled_table()

    placements = sampler.sample_placements([region], 50)

    assert len(placements) == 50
    for placement in placements:
        local = region.to_local(placement.transform.position)
        assert abs(local[0]) <= region.width / 2 + 1e-9
        assert abs(local[1]) == pytest.approx(0.0, abs=1e-9)
        assert abs(local[2]) <= region.depth / 2 + 1e-9
        assert region.contains(placement.transform.position)


def test_orientation_is_pure_yaw_about_surface_normal() -> None:
    sampler = PlacementSampler(np.random.default_rng(9))
    region = angled_table()

    for transform in sampler.sample([region], 10):
        relative = region.transform.rotation.conjugate() * transform.rotation
        assert relative.x == pytest.approx(0.0, abs=1e-9)
        assert relative.z == pytest.approx(0.0, abs=1e-9)


def test_every_region_gets_used() -> None:
    sampler = PlacementSampler(np.random.default_rng(1))
    floor = PlacementRegion("floor", Transform((0.0, 0.0, -2.0)), 3.0, 3.0, SurfaceClassification.FLOOR)
    table = angled_table()

    placements = sampler.sample_placements([floor, table], 200)

    assert {placement.region.id for placement in placements} == {"floor", "table"}
    for placement in placements:
        assert placement.region.contains(placement.transform.position)


def test_degenerate_region_places_at_centre() -> None:
    sampler = PlacementSampler(np.random.default_rng(2))
    point = PlacementRegion("point", Transform((4.0, 1.0, 2.0)), 0.0, 0.0)

    transforms = sampler.sample([point], 3)

    assert len(transforms) == 3
    for transform in transforms:
        assert np.allclose(transform.position, (4.0, 1.0, 2.0))
