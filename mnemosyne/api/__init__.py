"""
Control API for the round engine.
"""

from __future__ import annotations

from .server import create_app
from .state import GameSession

__all__ = ["create_app", "GameSession"]
