"""
Feed consumed by the external renderer, and the path taps take back in.

The renderer never owns game objects. It mirrors :class:`RenderEntry` records
by id and reports taps by id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .geometry import Transform
from .round import COUNTDOWN_PHASES, RoundPhase, RoundSnapshot, RoundStateMachine, TapResult

LOG = logging.getLogger(__name__)

PHASE_TITLES = {
    RoundPhase.SETTING_UP: "Setting Up...",
    RoundPhase.MEMORIZING: "Memorize the Scene!",
    RoundPhase.TRANSITIONING: "",
    RoundPhase.IDENTIFYING: "Find the Changes",
    RoundPhase.FINISHED: "",
}

HIGHLIGHT_CORRECT = "correct"
HIGHLIGHT_INCORRECT = "incorrect"


@dataclass(frozen=True)
class RenderEntry:
    id: str
    transform: Transform
    visible: bool
    tappable: bool
    highlight: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transform": self.transform.to_dict(),
            "visible": self.visible,
            "tappable": self.tappable,
            "highlight": self.highlight,
        }


def hud_for(snapshot: RoundSnapshot) -> dict:
    """What a heads-up display shows for ``snapshot``."""

    return {
        "title": PHASE_TITLES[snapshot.phase],
        "showCountdown": snapshot.phase in COUNTDOWN_PHASES,
        "showScore": snapshot.phase in (RoundPhase.IDENTIFYING, RoundPhase.FINISHED),
    }


class RenderBridge:
    """
    Mirrors the machine's registry as a list of render entries.

    ``subscribe`` pushes a fresh feed whenever the registry revision or the
    round phase moves; ``feed`` can be polled instead.
    """

    def __init__(self, machine: RoundStateMachine) -> None:
        self.machine = machine
        self._observer_counter = 0
        self._observers: Dict[int, Callable[[List[RenderEntry]], None]] = {}
        self._last_key: Optional[tuple] = None
        self._machine_token: Optional[int] = None

    @property
    def revision(self) -> tuple:
        snapshot = self.machine.snapshot()
        return (
            snapshot.round_id,
            snapshot.phase.value,
            self.machine.registry.revision,
            snapshot.incorrect_selections,
        )

    def feed(self) -> List[RenderEntry]:
        machine = self.machine
        visible = machine.registry.visible
        entries = []
        for tracked in machine.registry.all():
            if tracked.resolved:
                highlight = HIGHLIGHT_CORRECT
            elif machine.incorrect_taps(tracked.id):
                highlight = HIGHLIGHT_INCORRECT
            else:
                highlight = None
            entries.append(
                RenderEntry(
                    id=tracked.id,
                    transform=tracked.transform,
                    visible=visible,
                    tappable=machine.is_tappable(tracked),
                    highlight=highlight,
                )
            )
        return entries

    def tap(self, object_id: str) -> TapResult:
        return self.machine.resolve_tap(object_id)

    def submit_tap(self, object_id: str) -> None:
        self.machine.submit_tap(object_id)

    def subscribe(self, callback: Callable[[List[RenderEntry]], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        if self._machine_token is None:
            self._machine_token = self.machine.subscribe(self._handle_snapshot)
        else:
            self._deliver(token, callback, self.feed())
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)
        if not self._observers and self._machine_token is not None:
            self.machine.unsubscribe(self._machine_token)
            self._machine_token = None
            self._last_key = None

    def _handle_snapshot(self, snapshot: RoundSnapshot) -> None:
        key = self.revision
        if key == self._last_key:
            return
        self._last_key = key
        entries = self.feed()
        for token, callback in list(self._observers.items()):
            self._deliver(token, callback, entries)

    @staticmethod
    def _deliver(token: int, callback: Callable[[List[RenderEntry]], None], entries: List[RenderEntry]) -> None:
        try:
            callback(list(entries))
        except Exception:  # pragma: no cover - renderer failures stay local
            LOG.exception("Render observer %s failed.", token)
