import math

import numpy as np
import pytest

from mnemosyne.config import MutationPolicy
from mnemosyne.geometry import Transform
from mnemosyne.puzzle import build_puzzle, visible_rotation
from mnemosyne.registry import ObjectRegistry, ObjectStatus
from mnemosyne.sampler import PlacementSampler
from mnemosyne.surfaces import PlacementRegion, SurfaceClassification

FLOOR = PlacementRegion("floor", Transform((0.0, 0.0, -2.0)), 2.0, 2.0, SurfaceClassification.FLOOR)


def seeded_registry(rng: np.random.Generator, count: int) -> ObjectRegistry:
    registry = ObjectRegistry()
    for transform in PlacementSampler(rng).sample([FLOOR], count):
        registry.add_object(transform)
    return registry


def test_visible_rotation_angle_in_range() -> None:
    rng = np.random.default_rng(4)
    for _ in range(50):
        angle = visible_rotation(rng).angle()
        assert 0.2 * math.pi - 1e-9 <= angle <= 0.8 * math.pi + 1e-9


def test_alters_distinct_originals_and_adds_new_objects() -> None:
    rng = np.random.default_rng(8)
    registry = seeded_registry(rng, 3)
    before = {tracked.id: tracked.transform for tracked in registry.all()}

    result = build_puzzle(registry, PlacementSampler(rng), [FLOOR], MutationPolicy(2, 3), rng)

    assert len(set(result.altered_ids)) == 2
    assert len(result.added_ids) == 3
    assert result.total_targets == 5
    assert len(registry) == 6
    for object_id in result.altered_ids:
        tracked = registry.get(object_id)
        assert tracked.status is ObjectStatus.ORIGINAL_ALTERED
        assert tracked.transform.position == before[object_id].position
        turned = before[object_id].rotation.angle_to(tracked.transform.rotation)
        assert 0.2 * math.pi - 1e-6 <= turned <= 0.8 * math.pi + 1e-6
    for object_id in result.added_ids:
        assert object_id not in before
        assert registry.get(object_id).status is ObjectStatus.ADDED
    assert len(registry.with_status(ObjectStatus.ORIGINAL_UNCHANGED)) == 1


def test_alter_count_capped_by_available_originals() -> None:
    rng = np.random.default_rng(2)
    registry = seeded_registry(rng, 2)

    result = build_puzzle(registry, PlacementSampler(rng), [FLOOR], MutationPolicy(3, 4), rng)

    assert len(result.altered_ids) == 2
    assert len(result.added_ids) == 4
    assert result.total_targets == 6


def test_no_regions_means_no_added_objects() -> None:
    rng = np.random.default_rng(6)
    registry = seeded_registry(rng, 3)

    result = build_puzzle(registry, PlacementSampler(rng), [], MutationPolicy(1, 2), rng)

    assert result.added_ids == ()
    assert result.total_targets == 1
    assert len(registry) == 3


def test_fixed_angle_range_is_honoured() -> None:
    rng = np.random.default_rng(3)
    registry = seeded_registry(rng, 1)
    original = registry.all()[0].transform

    build_puzzle(
        registry,
        PlacementSampler(rng),
        [FLOOR],
        MutationPolicy(1, 0),
        rng,
        angle_range=(math.pi / 2, math.pi / 2),
    )

    altered = registry.all()[0].transform
    assert original.rotation.angle_to(altered.rotation) == pytest.approx(math.pi / 2)
