"""
Round orchestration for the spot-the-change memory game.

A round walks through ``settingUp -> memorizing -> transitioning ->
identifying -> finished``. Everything after setup runs inside one asyncio task
per round; starting another round or cancelling tears that task down before
any state of the new round is touched. All entry points are expected to run on
the event loop that owns the machine; :meth:`RoundStateMachine.submit_tap`
is the only thread-safe one.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from .config import Difficulty, MutationPolicy, RoundSettings
from .puzzle import PuzzleResult, build_puzzle
from .registry import ObjectRegistry, TrackedObject, UnknownObjectError
from .sampler import PlacementSampler
from .surfaces import PlacementRegion, SurfaceSource
from .ticker import CancelToken, RealtimeTicker, Ticker

LOG = logging.getLogger(__name__)


class RoundPhase(str, Enum):
    SETTING_UP = "settingUp"
    MEMORIZING = "memorizing"
    TRANSITIONING = "transitioning"
    IDENTIFYING = "identifying"
    FINISHED = "finished"


TRANSITIONS = {
    RoundPhase.SETTING_UP: frozenset({RoundPhase.MEMORIZING}),
    RoundPhase.MEMORIZING: frozenset({RoundPhase.TRANSITIONING}),
    RoundPhase.TRANSITIONING: frozenset({RoundPhase.IDENTIFYING}),
    RoundPhase.IDENTIFYING: frozenset({RoundPhase.FINISHED}),
    RoundPhase.FINISHED: frozenset({RoundPhase.SETTING_UP}),
}

COUNTDOWN_PHASES = frozenset({RoundPhase.MEMORIZING, RoundPhase.IDENTIFYING})


class TapResult(str, Enum):
    IGNORED = "ignored"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class RoundError(RuntimeError):
    """Base class for round related errors."""


class InvalidTransition(RoundError):
    """Raised when a phase change outside the transition table is attempted."""


@dataclass(frozen=True, slots=True)
class RoundSnapshot:
    """
    Immutable view of the observable round state.
    """

    rev: int
    round_id: int
    phase: RoundPhase
    countdown_value: int
    score: int
    correct_selections: int
    incorrect_selections: int
    total_targets: int
    active: bool
    difficulty: Difficulty

    def to_dict(self) -> dict:
        return {
            "rev": int(self.rev),
            "roundId": int(self.round_id),
            "phase": self.phase.value,
            "countdownValue": int(self.countdown_value),
            "score": int(self.score),
            "correctSelections": int(self.correct_selections),
            "incorrectSelections": int(self.incorrect_selections),
            "totalTargets": int(self.total_targets),
            "active": bool(self.active),
            "difficulty": self.difficulty.value,
        }


class RoundStateMachine:
    """
    Owns one round at a time: the scene registry, the stats and the phase.
    """

    def __init__(
        self,
        surfaces: SurfaceSource,
        settings: Optional[RoundSettings] = None,
        *,
        ticker: Optional[Ticker] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.surfaces = surfaces
        self.settings = settings or RoundSettings()
        self.ticker = ticker if ticker is not None else RealtimeTicker(self.settings.tick_seconds)
        self.rng = rng if rng is not None else np.random.default_rng()
        self.sampler = PlacementSampler(self.rng)
        self.registry = ObjectRegistry()

        self._phase = RoundPhase.SETTING_UP
        self._countdown = 0
        self._score = 0
        self._correct = 0
        self._incorrect = 0
        self._total_targets = 0
        self._incorrect_hits: Dict[str, int] = {}
        self._difficulty = self.settings.difficulty
        self._known_regions: List[PlacementRegion] = []
        self._puzzle: Optional[PuzzleResult] = None

        self._round_id = 0
        self._task: Optional[asyncio.Task] = None
        self._round_token: Optional[CancelToken] = None
        self._countdown_token: Optional[CancelToken] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self._rev = 0
        self._observer_counter = 0
        self._observers: Dict[int, Callable[[RoundSnapshot], None]] = {}

    # ------------------------------------------------------------------ properties

    @property
    def phase(self) -> RoundPhase:
        return self._phase

    @property
    def countdown_value(self) -> int:
        return self._countdown

    @property
    def score(self) -> int:
        return self._score

    @property
    def correct_selections(self) -> int:
        return self._correct

    @property
    def incorrect_selections(self) -> int:
        return self._incorrect

    @property
    def total_targets(self) -> int:
        return self._total_targets

    @property
    def difficulty(self) -> Difficulty:
        return self._difficulty

    @property
    def policy(self) -> MutationPolicy:
        return self.settings.policy_for(self._difficulty)

    @property
    def puzzle(self) -> Optional[PuzzleResult]:
        return self._puzzle

    @property
    def round_id(self) -> int:
        return self._round_id

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def incorrect_taps(self, object_id: str) -> int:
        return self._incorrect_hits.get(object_id, 0)

    def is_tappable(self, tracked: TrackedObject) -> bool:
        return self._phase is RoundPhase.IDENTIFYING and self.registry.visible and not tracked.resolved

    # ------------------------------------------------------------------ observers

    def snapshot(self) -> RoundSnapshot:
        return RoundSnapshot(
            rev=self._rev,
            round_id=self._round_id,
            phase=self._phase,
            countdown_value=self._countdown,
            score=self._score,
            correct_selections=self._correct,
            incorrect_selections=self._incorrect,
            total_targets=self._total_targets,
            active=self.is_active,
            difficulty=self._difficulty,
        )

    def subscribe(self, callback: Callable[[RoundSnapshot], None]) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        self._observer_counter += 1
        token = self._observer_counter
        self._observers[token] = callback
        try:
            callback(self.snapshot())
        except Exception:  # pragma: no cover - observer failures should not kill the round
            LOG.exception("Round observer %s failed during initial snapshot.", token)
        return token

    def unsubscribe(self, token: int) -> None:
        self._observers.pop(token, None)

    def _notify(self) -> None:
        self._rev += 1
        if not self._observers:
            return
        snapshot = self.snapshot()
        for token, callback in list(self._observers.items()):
            try:
                callback(snapshot)
            except Exception:  # pragma: no cover - observer failures should not kill the round
                LOG.exception("Round observer %s failed.", token)

    # ------------------------------------------------------------------ control surface

    def configure(self, settings: RoundSettings) -> None:
        """Swap round settings between rounds."""

        if self.is_active:
            raise RoundError("cannot change settings while a round is running")
        self.settings = settings
        self._difficulty = settings.difficulty
        if isinstance(self.ticker, RealtimeTicker):
            self.ticker.unit_seconds = max(0.0, float(settings.tick_seconds))
        self._notify()

    def start_round(self, difficulty: Optional[Difficulty | str] = None) -> asyncio.Task:
        """
        Begin a fresh round, cancelling any round still in flight.

        Setup runs synchronously, so the machine is already memorizing when
        this returns. Must be called from inside the running event loop.
        """

        loop = asyncio.get_running_loop()
        level = Difficulty(difficulty) if difficulty is not None else self.settings.difficulty
        self._cancel_active()
        self._loop = loop
        self._difficulty = level
        self._round_id += 1
        token = CancelToken()
        self._round_token = token

        self._reset()
        LOG.info("Round %d starting (difficulty=%s)", self._round_id, self._difficulty.value)
        self._setup_scene()
        self._countdown = self.settings.memorize_seconds
        self._transition(RoundPhase.MEMORIZING)

        task = loop.create_task(self._run(token, self._round_id), name=f"mnemosyne-round-{self._round_id}")
        task.add_done_callback(self._handle_task_done)
        self._task = task
        return task

    def cancel_round(self) -> None:
        """Abort the active round and return to an empty, idle scene."""

        was_active = self.is_active
        self._cancel_active()
        self._round_token = None
        self._reset()
        if was_active:
            LOG.info("Round %d cancelled", self._round_id)

    def end_memorize(self) -> bool:
        """Cut the memorize countdown short. Returns whether anything happened."""

        if self._phase is not RoundPhase.MEMORIZING or self._countdown_token is None:
            return False
        self._countdown_token.cancel()
        return True

    async def wait_closed(self) -> None:
        task = self._task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------ taps

    def resolve_tap(self, object_id: str) -> TapResult:
        if self._phase is not RoundPhase.IDENTIFYING:
            return TapResult.IGNORED
        try:
            tracked = self.registry.get(object_id)
        except UnknownObjectError:
            LOG.debug("Tap on unknown object %s ignored", object_id)
            return TapResult.IGNORED
        if tracked.resolved:
            return TapResult.IGNORED

        if tracked.status.is_target:
            self.registry.mark_resolved(object_id)
            self._score += self.settings.reward
            self._correct += 1
            result = TapResult.CORRECT
        else:
            # Untouched originals stay tappable and keep costing points.
            self._score -= self.settings.penalty
            self._incorrect += 1
            self._incorrect_hits[object_id] = self._incorrect_hits.get(object_id, 0) + 1
            result = TapResult.INCORRECT

        LOG.debug("Tap on %s: %s (score=%d)", object_id, result.value, self._score)
        if result is TapResult.CORRECT and self._correct == self._total_targets:
            self._finish()
        else:
            self._notify()
        return result

    def submit_tap(self, object_id: str) -> None:
        """Queue a tap from any thread onto the machine's event loop."""

        loop = self._loop
        if loop is None or loop.is_closed():
            LOG.debug("Dropping tap on %s; no round loop", object_id)
            return
        loop.call_soon_threadsafe(self.resolve_tap, object_id)

    # ------------------------------------------------------------------ internals

    def _transition(self, target: RoundPhase) -> None:
        if target not in TRANSITIONS[self._phase]:
            raise InvalidTransition(f"{self._phase.value} -> {target.value}")
        LOG.debug("Round %d: %s -> %s", self._round_id, self._phase.value, target.value)
        self._phase = target
        self._notify()

    def _finish(self) -> None:
        self._transition(RoundPhase.FINISHED)
        if self._countdown_token is not None:
            self._countdown_token.cancel()
        LOG.info(
            "Round %d finished: score=%d correct=%d/%d incorrect=%d",
            self._round_id,
            self._score,
            self._correct,
            self._total_targets,
            self._incorrect,
        )

    def _handle_task_done(self, task: asyncio.Task) -> None:
        if task is not self._task:
            # Replaced or cancelled; the new owner already published its state.
            return
        if not task.cancelled() and task.exception() is not None:
            LOG.error("Round %d task failed", self._round_id, exc_info=task.exception())
        self._notify()

    def _cancel_active(self) -> None:
        if self._countdown_token is not None:
            self._countdown_token.cancel()
            self._countdown_token = None
        if self._round_token is not None:
            self._round_token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _reset(self) -> None:
        # A restart may interrupt any phase, not only ``finished``.
        self._phase = RoundPhase.SETTING_UP
        self._countdown = 0
        self._score = 0
        self._correct = 0
        self._incorrect = 0
        self._total_targets = 0
        self._incorrect_hits = {}
        self._known_regions = []
        self._puzzle = None
        self.registry.clear()
        self._notify()

    def _setup_scene(self) -> None:
        self._known_regions = list(self.surfaces.current_regions())
        requested = self.settings.initial_objects
        transforms = self.sampler.sample(self._known_regions, requested)
        for transform in transforms:
            self.registry.add_object(transform)
        if len(transforms) < requested:
            LOG.warning(
                "Round %d set up with %d of %d objects (%d surfaces)",
                self._round_id,
                len(transforms),
                requested,
                len(self._known_regions),
            )

    def _build_puzzle_once(self) -> None:
        if self._puzzle is not None:
            return
        fresh = list(self.surfaces.current_regions())
        if fresh:
            self._known_regions = fresh
        settings = self.settings
        self._puzzle = build_puzzle(
            self.registry,
            self.sampler,
            self._known_regions,
            self.policy,
            self.rng,
            angle_range=(settings.min_alter_angle, settings.max_alter_angle),
        )
        self._total_targets = self._puzzle.total_targets

    async def _run_countdown(self, seconds: int, phase: RoundPhase) -> None:
        token = CancelToken()
        self._countdown_token = token
        self._countdown = max(0, int(seconds))
        self._notify()
        while self._countdown > 0:
            if token.cancelled or self._phase is not phase:
                return
            await self.ticker.sleep(1, token)
            if token.cancelled or self._phase is not phase:
                return
            self._countdown -= 1
            self._notify()

    async def _run(self, token: CancelToken, round_id: int) -> None:
        try:
            await self._run_countdown(self.settings.memorize_seconds, RoundPhase.MEMORIZING)
            if token.cancelled or self._phase is not RoundPhase.MEMORIZING:
                return

            self._transition(RoundPhase.TRANSITIONING)
            self.registry.visible = False
            self._notify()
            await self.ticker.sleep(self.settings.transition_pause, token)
            if token.cancelled:
                return

            self._build_puzzle_once()
            self.registry.visible = True
            self._transition(RoundPhase.IDENTIFYING)
            if self._correct >= self._total_targets:
                LOG.warning("Round %d has no targets; finishing immediately", round_id)
                self._finish()
                return

            await self._run_countdown(self.settings.identify_seconds, RoundPhase.IDENTIFYING)
            if not token.cancelled and self._phase is RoundPhase.IDENTIFYING:
                self._finish()
        except asyncio.CancelledError:
            LOG.debug("Round %d task cancelled", round_id)
            raise
