import asyncio
from dataclasses import replace
from typing import List

import numpy as np

from mnemosyne.bridge import HIGHLIGHT_CORRECT, HIGHLIGHT_INCORRECT, RenderBridge, RenderEntry, hud_for
from mnemosyne.config import RoundSettings
from mnemosyne.geometry import Transform
from mnemosyne.registry import ObjectStatus
from mnemosyne.round import RoundPhase, RoundStateMachine, TapResult
from mnemosyne.surfaces import PlacementRegion, StaticSurfaces, SurfaceClassification
from mnemosyne.ticker import ManualTicker

FLOOR = PlacementRegion("floor", Transform((0.0, 0.0, -2.0)), 2.0, 2.0, SurfaceClassification.FLOOR)


def make_bridge() -> tuple[RenderBridge, RoundStateMachine, ManualTicker]:
    ticker = ManualTicker()
    machine = RoundStateMachine(
        StaticSurfaces([FLOOR]),
        RoundSettings(),
        ticker=ticker,
        rng=np.random.default_rng(12),
    )
    return RenderBridge(machine), machine, ticker


def test_feed_follows_round_phases() -> None:
    async def scenario() -> None:
        bridge, machine, ticker = make_bridge()
        assert bridge.feed() == []

        machine.start_round()
        await ticker.settle()
        entries = bridge.feed()
        assert len(entries) == 3
        assert all(entry.visible and not entry.tappable for entry in entries)

        await ticker.advance(10)
        assert all(not entry.visible for entry in bridge.feed())

        await ticker.advance(2)
        entries = bridge.feed()
        assert len(entries) == 5
        assert all(entry.visible and entry.tappable for entry in entries)
        assert all(entry.highlight is None for entry in entries)
        machine.cancel_round()

    asyncio.run(scenario())


def test_taps_drive_highlights() -> None:
    async def scenario() -> None:
        bridge, machine, ticker = make_bridge()
        machine.start_round()
        await ticker.settle()
        await ticker.advance(12)

        target = next(t.id for t in machine.registry.all() if t.status.is_target)
        wrong = machine.registry.with_status(ObjectStatus.ORIGINAL_UNCHANGED)[0].id
        assert bridge.tap(target) is TapResult.CORRECT
        assert bridge.tap(wrong) is TapResult.INCORRECT

        by_id = {entry.id: entry for entry in bridge.feed()}
        assert by_id[target].highlight == HIGHLIGHT_CORRECT
        assert not by_id[target].tappable
        assert by_id[wrong].highlight == HIGHLIGHT_INCORRECT
        assert by_id[wrong].tappable
        machine.cancel_round()

    asyncio.run(scenario())


def test_subscribers_receive_pushes_on_change() -> None:
    async def scenario() -> None:
        bridge, machine, ticker = make_bridge()
        pushes: List[List[RenderEntry]] = []
        token = bridge.subscribe(pushes.append)
        assert len(pushes) == 1

        machine.start_round()
        await ticker.settle()
        count_after_start = len(pushes)
        assert pushes[-1] and all(entry.visible for entry in pushes[-1])

        await ticker.advance(5)
        assert len(pushes) == count_after_start

        await ticker.advance(5)
        assert all(not entry.visible for entry in pushes[-1])

        late: List[List[RenderEntry]] = []
        bridge.subscribe(late.append)
        assert len(late) == 1 and len(late[0]) == 3

        bridge.unsubscribe(token)
        machine.cancel_round()

    asyncio.run(scenario())


def test_hud_titles_per_phase() -> None:
    _, machine, _ = make_bridge()

    hud = hud_for(machine.snapshot())
    assert hud == {"title": "Setting Up...", "showCountdown": False, "showScore": False}

    snapshot = machine.snapshot()
    memorizing = hud_for(replace(snapshot, phase=RoundPhase.MEMORIZING))
    identifying = hud_for(replace(snapshot, phase=RoundPhase.IDENTIFYING))
    finished = hud_for(replace(snapshot, phase=RoundPhase.FINISHED))

    assert memorizing["title"] == "Memorize the Scene!" and memorizing["showCountdown"]
    assert identifying["title"] == "Find the Changes" and identifying["showScore"]
    assert finished["showScore"] and not finished["showCountdown"]
