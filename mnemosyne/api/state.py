"""
Session container shared by the control API and the realtime feed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ..bridge import RenderBridge, hud_for
from ..config import RoundSettings, load_settings
from ..round import RoundStateMachine
from ..surfaces import SurfaceRegistry
from ..ticker import Ticker

LOG = logging.getLogger(__name__)


@dataclass
class GameSession:
    """
    Owns the surfaces, the round machine and the render bridge of one player.

    There is no module level instance; whoever hosts the engine creates a
    session and hands it to the API.
    """

    settings: RoundSettings = field(default_factory=RoundSettings)
    active_profile: str = "default"
    surfaces: SurfaceRegistry = field(default_factory=SurfaceRegistry)
    ticker: Optional[Ticker] = None
    seed: Optional[int] = None
    machine: RoundStateMachine = field(init=False)
    bridge: RenderBridge = field(init=False)

    def __post_init__(self) -> None:
        self.machine = RoundStateMachine(
            self.surfaces,
            self.settings,
            ticker=self.ticker,
            rng=np.random.default_rng(self.seed),
        )
        self.bridge = RenderBridge(self.machine)

    def round_state(self) -> dict:
        snapshot = self.machine.snapshot()
        payload = snapshot.to_dict()
        payload["hud"] = hud_for(snapshot)
        return payload

    def render_feed(self) -> dict:
        return {
            "revision": list(self.bridge.revision),
            "entries": [entry.to_dict() for entry in self.bridge.feed()],
        }

    def surfaces_state(self) -> dict:
        return {
            "hasFoundSurfaces": self.surfaces.has_found_surfaces,
            "regions": [region.to_dict() for region in self.surfaces.all_regions()],
        }

    def snapshot(self) -> dict:
        return {
            "profile": self.active_profile,
            "settings": self.settings.to_dict(),
            "round": self.round_state(),
            "render": self.render_feed(),
            "surfaces": self.surfaces_state(),
        }

    def apply_profile(self, name: str) -> RoundSettings:
        settings = load_settings(name)
        self.machine.configure(settings)
        self.settings = settings
        self.active_profile = name
        LOG.info("Activated profile %s", name)
        return settings

    def shutdown(self) -> None:
        if self.machine.is_active:
            LOG.info("Cancelling active round on shutdown")
            self.machine.cancel_round()
