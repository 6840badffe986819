"""
Mnemosyne round engine.

This package hosts the game core of the spot-the-change memory puzzle: objects
are scattered over the surfaces a host has detected, shown for a while,
hidden, quietly altered, and shown again for the player to find the changes.
Rendering, plane detection and audio live in the host; the engine only talks
to them through :mod:`mnemosyne.bridge` and :mod:`mnemosyne.surfaces`.
"""

from __future__ import annotations

from typing import Optional

from .config import Difficulty, RoundSettings, load_settings

__all__ = [
    "EngineConfig",
]


class EngineConfig:
    """Top level engine configuration resolved from the command line."""

    def __init__(self, profile: str = "default", difficulty: Optional[str] = None) -> None:
        self.profile = profile
        self.difficulty = Difficulty(difficulty) if difficulty else None

    def round_settings(self) -> RoundSettings:
        settings = load_settings(self.profile)
        if self.difficulty is not None:
            settings = settings.with_difficulty(self.difficulty)
        return settings
