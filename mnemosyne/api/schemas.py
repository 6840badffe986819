"""
Pydantic schemas mirroring the REST/WS contract.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..config import Difficulty
from ..geometry import Quaternion, Transform
from ..surfaces import PlacementRegion, SurfaceClassification, SurfaceEvent


class TransformModel(BaseModel):
    position: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])
    rotation: List[float] = Field(
        default_factory=lambda: [1.0, 0.0, 0.0, 0.0],
        validation_alias=AliasChoices("rotation", "orientation"),
    )
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("position")
    @classmethod
    def _check_position(cls, value: List[float]) -> List[float]:
        if len(value) != 3:
            raise ValueError("position must have 3 components")
        return [float(v) for v in value]

    @field_validator("rotation")
    @classmethod
    def _check_rotation(cls, value: List[float]) -> List[float]:
        if len(value) != 4:
            raise ValueError("rotation must be a (w, x, y, z) quaternion")
        if not any(value):
            raise ValueError("rotation must be non-zero")
        return [float(v) for v in value]

    def to_transform(self) -> Transform:
        return Transform(position=tuple(self.position), rotation=Quaternion(*self.rotation))


class SurfaceModel(BaseModel):
    id: str
    transform: Optional[TransformModel] = None
    matrix: Optional[List[List[float]]] = Field(
        default=None,
        validation_alias=AliasChoices("matrix", "originFromAnchorTransform"),
    )
    width: float = Field(default=0.0, ge=0.0)
    depth: float = Field(default=0.0, ge=0.0, validation_alias=AliasChoices("depth", "height"))
    classification: SurfaceClassification = SurfaceClassification.UNKNOWN
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("classification", mode="before")
    @classmethod
    def _normalise_classification(cls, value: object) -> str:
        candidate = str(value or "unknown").strip().lower()
        known = {item.value for item in SurfaceClassification}
        return candidate if candidate in known else SurfaceClassification.UNKNOWN.value

    @field_validator("matrix")
    @classmethod
    def _check_matrix(cls, value: Optional[List[List[float]]]) -> Optional[List[List[float]]]:
        if value is None:
            return value
        if len(value) != 4 or any(len(row) != 4 for row in value):
            raise ValueError("matrix must be 4x4")
        return value

    def to_region(self) -> PlacementRegion:
        if self.matrix is not None:
            transform = Transform.from_matrix(self.matrix)
        elif self.transform is not None:
            transform = self.transform.to_transform()
        else:
            transform = Transform()
        return PlacementRegion(
            id=self.id,
            transform=transform,
            width=self.width,
            depth=self.depth,
            classification=self.classification,
        )


class SurfaceUpdateRequest(BaseModel):
    event: SurfaceEvent = SurfaceEvent.ADDED
    region: SurfaceModel = Field(validation_alias=AliasChoices("region", "anchor", "surface"))
    model_config = ConfigDict(populate_by_name=True)

    @field_validator("event", mode="before")
    @classmethod
    def _normalise_event(cls, value: object) -> str:
        return str(value or "added").strip().lower()


class StartRoundRequest(BaseModel):
    difficulty: Optional[Difficulty] = None

    @field_validator("difficulty", mode="before")
    @classmethod
    def _normalise_difficulty(cls, value: object) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value).strip().lower()


class TapRequest(BaseModel):
    object_id: str = Field(validation_alias=AliasChoices("object_id", "objectId", "id"))
    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _check_object_id(self) -> "TapRequest":
        if not self.object_id.strip():
            raise ValueError("object_id is required")
        return self
