"""
Rigid transforms for placed objects and placement surfaces.

Quaternions use the ``(w, x, y, z)`` convention and the engine's world frame is
y-up: a horizontal surface's normal is its local +Y axis.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence, Tuple

import numpy as np
from numpy import typing as npt

Vector3 = Tuple[float, float, float]

UP: Vector3 = (0.0, 1.0, 0.0)
_EPSILON = 1e-9


def _as_vector(value: Sequence[float]) -> np.ndarray:
    array = np.asarray(value, dtype=float)
    if array.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {array.shape}")
    return array


def _as_tuple(array: npt.ArrayLike) -> Vector3:
    x, y, z = (float(v) for v in np.asarray(array, dtype=float))
    return (x, y, z)


@dataclass(frozen=True, slots=True)
class Quaternion:
    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def identity(cls) -> "Quaternion":
        return cls()

    @classmethod
    def from_axis_angle(cls, axis: Sequence[float], angle: float) -> "Quaternion":
        """
        Rotation of ``angle`` radians around ``axis`` (normalised here).
        """

        vector = _as_vector(axis)
        norm = float(np.linalg.norm(vector))
        if norm < _EPSILON:
            raise ValueError("rotation axis must be non-zero")
        vector = vector / norm
        half = 0.5 * float(angle)
        s = math.sin(half)
        return cls(math.cos(half), *(float(v) * s for v in vector))

    def as_array(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z], dtype=float)

    def conjugate(self) -> "Quaternion":
        return Quaternion(self.w, -self.x, -self.y, -self.z)

    def normalized(self) -> "Quaternion":
        array = self.as_array()
        norm = float(np.linalg.norm(array))
        if norm < _EPSILON:
            return Quaternion.identity()
        return Quaternion(*(float(v) for v in array / norm))

    def __mul__(self, other: "Quaternion") -> "Quaternion":
        if not isinstance(other, Quaternion):
            return NotImplemented
        w1, x1, y1, z1 = self.w, self.x, self.y, self.z
        w2, x2, y2, z2 = other.w, other.x, other.y, other.z
        return Quaternion(
            w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
            w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
            w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
            w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        )

    def rotation_matrix(self) -> np.ndarray:
        w, x, y, z = self.normalized().as_array()
        return np.array(
            [
                [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
                [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
                [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
            ],
            dtype=float,
        )

    def rotate(self, vector: Sequence[float]) -> np.ndarray:
        return self.rotation_matrix() @ _as_vector(vector)

    def angle(self) -> float:
        """Rotation angle in ``[0, pi]``."""

        w = abs(self.normalized().w)
        return 2.0 * math.acos(min(1.0, w))

    def angle_to(self, other: "Quaternion") -> float:
        return (self.conjugate() * other).angle()

    @classmethod
    def from_matrix(cls, matrix: npt.ArrayLike) -> "Quaternion":
        m = np.asarray(matrix, dtype=float)[:3, :3]
        trace = float(np.trace(m))
        if trace > 0.0:
            s = 2.0 * math.sqrt(trace + 1.0)
            w = 0.25 * s
            x = (m[2, 1] - m[1, 2]) / s
            y = (m[0, 2] - m[2, 0]) / s
            z = (m[1, 0] - m[0, 1]) / s
        elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
            w = (m[2, 1] - m[1, 2]) / s
            x = 0.25 * s
            y = (m[0, 1] + m[1, 0]) / s
            z = (m[0, 2] + m[2, 0]) / s
        elif m[1, 1] > m[2, 2]:
            s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
            w = (m[0, 2] - m[2, 0]) / s
            x = (m[0, 1] + m[1, 0]) / s
            y = 0.25 * s
            z = (m[1, 2] + m[2, 1]) / s
        else:
            s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
            w = (m[1, 0] - m[0, 1]) / s
            x = (m[0, 2] + m[2, 0]) / s
            y = (m[1, 2] + m[2, 1]) / s
            z = 0.25 * s
        return cls(float(w), float(x), float(y), float(z)).normalized()

    def to_list(self) -> list:
        return [float(self.w), float(self.x), float(self.y), float(self.z)]


@dataclass(frozen=True, slots=True)
class Transform:
    """
    World pose of an object or surface: a position and a unit orientation.
    """

    position: Vector3 = (0.0, 0.0, 0.0)
    rotation: Quaternion = field(default_factory=Quaternion.identity)

    def __post_init__(self) -> None:
        object.__setattr__(self, "position", _as_tuple(_as_vector(self.position)))
        object.__setattr__(self, "rotation", self.rotation.normalized())

    @classmethod
    def from_matrix(cls, matrix: npt.ArrayLike) -> "Transform":
        m = np.asarray(matrix, dtype=float)
        if m.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
        return cls(position=_as_tuple(m[:3, 3]), rotation=Quaternion.from_matrix(m))

    def matrix(self) -> np.ndarray:
        m = np.eye(4, dtype=float)
        m[:3, :3] = self.rotation.rotation_matrix()
        m[:3, 3] = self.position
        return m

    def apply(self, point: Sequence[float]) -> Vector3:
        """Map a point from this transform's local frame into the world."""

        return _as_tuple(self.rotation.rotate(point) + np.asarray(self.position))

    def inverse_apply(self, point: Sequence[float]) -> Vector3:
        """Map a world point into this transform's local frame."""

        offset = _as_vector(point) - np.asarray(self.position)
        return _as_tuple(self.rotation.rotation_matrix().T @ offset)

    def compose(self, local: "Transform") -> "Transform":
        return Transform(
            position=self.apply(local.position),
            rotation=self.rotation * local.rotation,
        )

    def rotated_by(self, delta: Quaternion) -> "Transform":
        """Post-multiply ``delta`` onto the orientation, keeping the position."""

        return Transform(position=self.position, rotation=self.rotation * delta)

    def to_dict(self) -> dict:
        return {
            "position": [float(v) for v in self.position],
            "rotation": self.rotation.to_list(),
        }


def random_unit_axis(rng: np.random.Generator) -> Vector3:
    """
    Uniformly random direction, rejection-sampled from the unit ball.
    """

    while True:
        candidate = rng.uniform(-1.0, 1.0, size=3)
        norm = float(np.linalg.norm(candidate))
        if _EPSILON < norm <= 1.0:
            return _as_tuple(candidate / norm)


def yaw_rotation(angle: float) -> Quaternion:
    return Quaternion.from_axis_angle(UP, angle)
