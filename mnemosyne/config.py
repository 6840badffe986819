"""
Round tuning: difficulty policies and YAML profiles.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
ENV_PROFILES_VAR = "MNEMOSYNE_PROFILES"


class ConfigError(ValueError):
    """Raised when a profile contains an invalid value."""


class ProfileNotFound(ConfigError):
    """Raised when a requested profile does not exist."""


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class MutationPolicy:
    """How many originals get rotated and how many new objects appear."""

    alter_count: int = 1
    add_count: int = 2

    def __post_init__(self) -> None:
        for name in ("alter_count", "add_count"):
            value = getattr(self, name)
            if int(value) != value or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
            object.__setattr__(self, name, int(value))

    @property
    def total(self) -> int:
        return self.alter_count + self.add_count


DEFAULT_POLICIES: Dict[Difficulty, MutationPolicy] = {
    Difficulty.EASY: MutationPolicy(1, 2),
    Difficulty.MEDIUM: MutationPolicy(2, 3),
    Difficulty.HARD: MutationPolicy(3, 4),
}


@dataclass(frozen=True)
class RoundSettings:
    difficulty: Difficulty = Difficulty.EASY
    initial_objects: int = 3
    memorize_seconds: int = 10
    identify_seconds: int = 60
    transition_pause: int = 2
    tick_seconds: float = 1.0
    reward: int = 10
    penalty: int = 5
    min_alter_angle: float = 0.2 * math.pi
    max_alter_angle: float = 0.8 * math.pi
    policies: Mapping[Difficulty, MutationPolicy] = field(default_factory=lambda: dict(DEFAULT_POLICIES))

    def __post_init__(self) -> None:
        object.__setattr__(self, "difficulty", Difficulty(self.difficulty))
        for name in ("initial_objects", "memorize_seconds", "identify_seconds", "transition_pause", "reward", "penalty"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigError(f"{name} must be a non-negative integer, got {value!r}")
        if self.tick_seconds < 0:
            raise ConfigError("tick_seconds must be non-negative")
        if not 0.0 < self.min_alter_angle <= self.max_alter_angle < 2.0 * math.pi:
            raise ConfigError("alter angle range must satisfy 0 < min <= max < 2*pi")

    def policy_for(self, difficulty: Optional[Difficulty | str] = None) -> MutationPolicy:
        level = Difficulty(difficulty) if difficulty is not None else self.difficulty
        return self.policies.get(level, DEFAULT_POLICIES[level])

    def with_difficulty(self, difficulty: Difficulty | str) -> "RoundSettings":
        return replace(self, difficulty=Difficulty(difficulty))

    def to_dict(self) -> dict:
        return {
            "difficulty": self.difficulty.value,
            "initialObjects": self.initial_objects,
            "memorizeSeconds": self.memorize_seconds,
            "identifySeconds": self.identify_seconds,
            "transitionPause": self.transition_pause,
            "tickSeconds": self.tick_seconds,
            "reward": self.reward,
            "penalty": self.penalty,
            "minAlterAngle": self.min_alter_angle,
            "maxAlterAngle": self.max_alter_angle,
            "policies": {
                level.value: {"alter": policy.alter_count, "add": policy.add_count}
                for level, policy in self.policies.items()
            },
        }


def profiles_path() -> Path:
    override = os.environ.get(ENV_PROFILES_VAR)
    if override:
        return Path(override).expanduser()
    return PROFILES_PATH


def load_profiles(path: Optional[Path] = None) -> Dict[str, Any]:
    target = path or profiles_path()
    try:
        with Path(target).open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        profiles = {}
    if not isinstance(profiles, dict):
        raise ConfigError(f"profiles file {target} must contain a mapping")
    return profiles


def _parse_policies(raw: Any) -> Dict[Difficulty, MutationPolicy]:
    policies = dict(DEFAULT_POLICIES)
    if not raw:
        return policies
    if not isinstance(raw, dict):
        raise ConfigError("difficulties must be a mapping")
    for key, entry in raw.items():
        try:
            level = Difficulty(str(key).lower())
        except ValueError:
            raise ConfigError(f"unknown difficulty {key!r}") from None
        entry = entry or {}
        base = DEFAULT_POLICIES[level]
        policies[level] = MutationPolicy(
            alter_count=entry.get("alter", base.alter_count),
            add_count=entry.get("add", base.add_count),
        )
    return policies


def settings_from_mapping(data: Mapping[str, Any]) -> RoundSettings:
    defaults = RoundSettings()
    try:
        return RoundSettings(
            difficulty=Difficulty(str(data.get("difficulty", defaults.difficulty.value)).lower()),
            initial_objects=int(data.get("initial_objects", defaults.initial_objects)),
            memorize_seconds=int(data.get("memorize_seconds", defaults.memorize_seconds)),
            identify_seconds=int(data.get("identify_seconds", defaults.identify_seconds)),
            transition_pause=int(data.get("transition_pause", defaults.transition_pause)),
            tick_seconds=float(data.get("tick_seconds", defaults.tick_seconds)),
            reward=int(data.get("reward", defaults.reward)),
            penalty=int(data.get("penalty", defaults.penalty)),
            min_alter_angle=float(data.get("min_alter_angle", defaults.min_alter_angle)),
            max_alter_angle=float(data.get("max_alter_angle", defaults.max_alter_angle)),
            policies=_parse_policies(data.get("difficulties")),
        )
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigError):
            raise
        raise ConfigError(str(exc)) from exc


def load_settings(profile: str = "default", path: Optional[Path] = None) -> RoundSettings:
    profiles = load_profiles(path)
    if profile not in profiles:
        if profile == "default":
            return RoundSettings()
        raise ProfileNotFound(f"unknown profile '{profile}'")
    return settings_from_mapping(profiles[profile] or {})
