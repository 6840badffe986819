"""Headless demo of a full round.

Plays one round against a fake room (a floor and a table) with an automatic
player that taps every object it believes changed, then prints the result.
Useful to eyeball timing and logging without a renderer.

Examples
--------
Run an easy round at ten ticks per second::

    python scripts/demo_round.py --tick 0.1

Play a hard round and make one wrong guess first::

    python scripts/demo_round.py --difficulty hard --mistakes 1
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable

import numpy as np

from mnemosyne.config import Difficulty, RoundSettings
from mnemosyne.geometry import Transform
from mnemosyne.registry import ObjectStatus
from mnemosyne.round import RoundPhase, RoundStateMachine
from mnemosyne.surfaces import PlacementRegion, SurfaceClassification, SurfaceRegistry
from mnemosyne.ticker import RealtimeTicker
from mnemosyne.utils.logging import configure_logging


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mnemosyne headless round demo")
    parser.add_argument("--difficulty", choices=[level.value for level in Difficulty], default="easy")
    parser.add_argument("--tick", type=float, default=0.05, help="seconds per countdown tick")
    parser.add_argument("--mistakes", type=int, default=0, help="wrong taps before the right ones")
    parser.add_argument("--seed", type=int, default=None)
    return parser.parse_args(argv)


def build_room() -> SurfaceRegistry:
    room = SurfaceRegistry()
    room.add(PlacementRegion("floor", Transform((0.0, 0.0, -2.0)), 3.0, 3.0, SurfaceClassification.FLOOR))
    room.add(PlacementRegion("table", Transform((1.0, 0.75, -1.5)), 1.2, 0.8, SurfaceClassification.TABLE))
    room.add(PlacementRegion("wall", Transform((0.0, 1.5, -3.5)), 4.0, 2.5, SurfaceClassification.WALL))
    return room


async def play(args: argparse.Namespace) -> int:
    settings = RoundSettings(difficulty=Difficulty(args.difficulty), tick_seconds=args.tick)
    machine = RoundStateMachine(
        build_room(),
        settings,
        ticker=RealtimeTicker(settings.tick_seconds),
        rng=np.random.default_rng(args.seed),
    )

    identifying = asyncio.Event()

    def on_change(snapshot) -> None:
        if snapshot.phase is RoundPhase.IDENTIFYING:
            identifying.set()

    machine.subscribe(on_change)
    machine.start_round()
    await identifying.wait()

    originals = machine.registry.with_status(ObjectStatus.ORIGINAL_UNCHANGED)
    for tracked in originals[: max(0, args.mistakes)]:
        print(f"tap {tracked.id[:8]} -> {machine.resolve_tap(tracked.id).value}")
    for tracked in machine.registry.all():
        if tracked.status.is_target:
            await asyncio.sleep(settings.tick_seconds)
            print(f"tap {tracked.id[:8]} -> {machine.resolve_tap(tracked.id).value}")

    await machine.wait_closed()
    snapshot = machine.snapshot()
    print(
        f"phase={snapshot.phase.value} score={snapshot.score} "
        f"correct={snapshot.correct_selections}/{snapshot.total_targets} "
        f"incorrect={snapshot.incorrect_selections}"
    )
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(logging.DEBUG)
    return asyncio.run(play(args))


if __name__ == "__main__":
    sys.exit(main())
