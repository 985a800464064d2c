from __future__ import annotations

import asyncio
import logging

import pytest

from dungeon_sync.core.config import EngineConfig
from dungeon_sync.core.finalize import FinalizeProtocol, SchedulerState
from dungeon_sync.core.types import Direction, RoomCoord, WallState

ROOM = RoomCoord(5, 5)


class StubSnapshots:
    def __init__(self):
        self.depth = 0
        self.max_depth = 0
        self.refreshes = 0
        self.events: list[str] = []

    def suppress_snapshots(self):
        self.depth += 1
        self.max_depth = max(self.max_depth, self.depth)
        self.events.append("suppress")

    def resume_snapshots(self):
        self.depth -= 1
        self.events.append("resume")

    async def refresh_current_room_snapshot(self):
        self.refreshes += 1
        self.events.append("refresh")
        return None


def _ready_north(ledger):
    ledger.tick = 106
    ledger.set_door(Direction.NORTH, helpers=2, start=100, required=10)
    ledger.join_job(Direction.NORTH)


def test_full_sequence_claims_and_refreshes_once(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        snapshots = StubSnapshots()
        protocol = FinalizeProtocol(ledger, snapshots=snapshots, monotonic=monotonic)
        state = SchedulerState()

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)

        assert outcome.status == "claimed"
        assert outcome.job_resolved
        assert outcome.tick_signature and outcome.complete_signature and outcome.claim_signature
        assert [c[0] for c in ledger.calls] == ["tick", "complete", "claim"]
        assert snapshots.events == ["suppress", "resume", "refresh"]
        assert snapshots.depth == 0
        assert not state.is_processing(Direction.NORTH, ROOM)

    asyncio.run(run_test())


def test_wall_opened_elsewhere_is_success_noop_and_resets_failures(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        state = SchedulerState()
        state.record_failure(Direction.NORTH, ROOM, retry_at=0.0)
        state.record_failure(Direction.NORTH, ROOM, retry_at=0.0)

        async def opened_by_someone_else(direction, room=None):
            ledger.calls.append(("tick", room, direction))
            ledger.set_door(direction, wall=WallState.OPEN, completed=True)
            return "tick-sig"

        ledger.submit_tick = opened_by_someone_else
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)

        assert outcome.status == "resolved_elsewhere"
        assert state.failure_count(Direction.NORTH, ROOM) == 0
        assert ledger.count("complete") == 0
        assert ledger.count("claim") == 0

    asyncio.run(run_test())


def test_tick_failure_counts_once_and_uses_failure_cooldown(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        ledger.failing.add("tick")
        config = EngineConfig(failure_cooldown_seconds=30.0)
        snapshots = StubSnapshots()
        protocol = FinalizeProtocol(ledger, config, snapshots=snapshots, monotonic=monotonic)
        state = SchedulerState()

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)

        assert outcome.status == "tick_failed"
        assert state.failure_count(Direction.NORTH, ROOM) == 1
        assert state.cooldown_remaining(Direction.NORTH, ROOM, monotonic()) == 30.0
        assert ledger.rooms[(5, 5)]["progress"][Direction.NORTH] == 0
        assert ledger.count("complete") == 0
        assert snapshots.depth == 0
        assert snapshots.refreshes == 1

    asyncio.run(run_test())


def test_claim_failure_is_non_fatal_and_not_counted(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        ledger.failing.add("claim")
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)
        state = SchedulerState()
        state.record_failure(Direction.NORTH, ROOM, retry_at=0.0)

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)

        assert outcome.status == "completed"
        assert outcome.claim_signature is None
        assert outcome.job_resolved
        assert state.failure_count(Direction.NORTH, ROOM) == 0

    asyncio.run(run_test())


def test_complete_failure_counts_up_to_give_up(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        ledger.failing.add("complete")
        protocol = FinalizeProtocol(ledger, EngineConfig(max_retries=3), monotonic=monotonic)
        state = SchedulerState()

        statuses = []
        for _ in range(4):
            outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)
            statuses.append(outcome.status)

        assert statuses == ["complete_failed", "complete_failed", "complete_failed", "given_up"]
        assert state.failure_count(Direction.NORTH, ROOM) == 3
        assert ledger.count("complete") == 3
        assert ledger.count("tick") == 3

    asyncio.run(run_test())


def test_not_ready_and_missing_stake_leave_counter_alone(ledger, monotonic):
    async def run_test():
        ledger.tick = 104
        ledger.set_door(Direction.NORTH, helpers=2, start=100, required=10)
        ledger.join_job(Direction.NORTH)
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)
        state = SchedulerState()

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)
        assert outcome.status == "not_ready"
        assert state.failure_count(Direction.NORTH, ROOM) == 0

        ledger.tick = 110
        ledger.stakes.clear()
        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=state)
        assert outcome.status == "no_stake"
        assert state.failure_count(Direction.NORTH, ROOM) == 0
        assert ledger.count("complete") == 0

    asyncio.run(run_test())


def test_missing_player_after_tick_is_unavailable(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        ledger.player_missing = True
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)
        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=SchedulerState())
        assert outcome.status == "unavailable"
        assert outcome.tick_signature

    asyncio.run(run_test())


def test_remote_exception_still_releases_suppression(ledger, monotonic):
    async def run_test():
        _ready_north(ledger)
        ledger.raising.add("room")
        snapshots = StubSnapshots()
        protocol = FinalizeProtocol(ledger, snapshots=snapshots, monotonic=monotonic)
        state = SchedulerState()

        with pytest.raises(RuntimeError):
            await protocol.finalize(Direction.NORTH, ROOM, state=state, refresh_after=False)

        assert snapshots.events == ["suppress", "resume"]
        assert not state.is_processing(Direction.NORTH, ROOM)

    asyncio.run(run_test())


def test_claim_only_path(ledger, monotonic):
    async def run_test():
        ledger.set_door(Direction.WEST, wall=WallState.OPEN, completed=True)
        ledger.join_job(Direction.WEST)
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)

        outcome = await protocol.claim(Direction.WEST, ROOM)
        assert outcome.status == "claimed"
        assert [c[0] for c in ledger.calls] == ["claim"]

        ledger.failing.add("claim")
        outcome = await protocol.claim(Direction.WEST, ROOM)
        assert outcome.status == "claim_failed"

    asyncio.run(run_test())


def test_claim_only_path_respects_processing_flag(ledger, monotonic):
    async def run_test():
        ledger.set_door(Direction.WEST, wall=WallState.OPEN, completed=True)
        ledger.join_job(Direction.WEST)
        protocol = FinalizeProtocol(ledger, monotonic=monotonic)
        state = SchedulerState()
        state.begin_processing(Direction.WEST, ROOM)

        outcome = await protocol.claim(Direction.WEST, ROOM, state=state)
        assert outcome.status == "busy"
        assert ledger.calls == []

        state.end_processing(Direction.WEST, ROOM)
        outcome = await protocol.claim(Direction.WEST, ROOM, state=state)
        assert outcome.status == "claimed"
        assert not state.is_processing(Direction.WEST, ROOM)

    asyncio.run(run_test())


def test_processing_flag_is_per_room(ledger, monotonic):
    state = SchedulerState()
    assert state.begin_processing(Direction.NORTH, ROOM)
    assert state.begin_processing(Direction.NORTH, RoomCoord(6, 5))
    assert not state.begin_processing(Direction.NORTH, ROOM)


def test_failed_refresh_after_finalize_is_logged_not_raised(ledger, monotonic, caplog):
    class BrokenRefresh(StubSnapshots):
        async def refresh_current_room_snapshot(self):
            await super().refresh_current_room_snapshot()
            raise RuntimeError("room fetch failed")

    async def run_test():
        _ready_north(ledger)
        snapshots = BrokenRefresh()
        protocol = FinalizeProtocol(ledger, snapshots=snapshots, monotonic=monotonic)

        outcome = await protocol.finalize(Direction.NORTH, ROOM, state=SchedulerState())
        assert outcome.status == "claimed"
        assert snapshots.depth == 0

    with caplog.at_level(logging.WARNING):
        asyncio.run(run_test())
    assert "SNAPSHOT REFRESH FAILED" in caplog.text


def test_step_error_is_not_masked_by_failed_refresh(ledger, monotonic):
    class BrokenRefresh(StubSnapshots):
        async def refresh_current_room_snapshot(self):
            raise RuntimeError("room fetch failed")

    async def run_test():
        _ready_north(ledger)
        ledger.raising.add("room")
        protocol = FinalizeProtocol(ledger, snapshots=BrokenRefresh(), monotonic=monotonic)

        with pytest.raises(RuntimeError, match="rpc down"):
            await protocol.finalize(Direction.NORTH, ROOM, state=SchedulerState())

    asyncio.run(run_test())
