"""
Tests for RuntimeRiskState: daily reset, kill switch, circuit breaker and
persistence through SQLiteRiskStateStore.
"""

import asyncio
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from config.constants import AUDIT_EVENTS, DIRECTIONS, EXECUTION_MODES
from config.settings import RiskLimitsConfig
from execution.risk_state import CIRCUIT_BREAKER_ACTOR, DailyResetScheduler, RuntimeRiskState
from execution.risk_state_store import SQLiteRiskStateStore
from tests.helpers import FixedClock

DAY_ONE = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestDailyReset(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.clock = FixedClock(DAY_ONE)
        self.risk = RuntimeRiskState(clock=self.clock)

    async def test_reset_is_idempotent_within_a_day(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES, pnl=-5.0)

        next_day = datetime(2024, 3, 2, 0, 0, 1, tzinfo=timezone.utc)
        self.assertTrue(await self.risk.reset_daily(now=next_day))
        self.assertFalse(await self.risk.reset_daily(now=next_day))

        state = self.risk.peek()
        self.assertEqual(state.daily_pnl, 0.0)
        self.assertEqual(state.daily_trades, 0)
        self.assertEqual(state.daily_date, "2024-03-02")

    async def test_same_day_reset_changes_nothing(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES, pnl=3.0)
        self.assertFalse(await self.risk.reset_daily())
        self.assertEqual(self.risk.peek().daily_trades, 1)

    async def test_kill_switch_and_positions_survive_reset(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES)
        await self.risk.activate_kill_switch("manual stop")

        self.clock.advance(days=1)
        await self.risk.reset_daily()

        state = self.risk.peek()
        self.assertTrue(state.kill_switch_active)
        self.assertEqual(state.kill_switch_reason, "manual stop")
        self.assertEqual(state.exposure_for("m1"), 10.0)

    async def test_missed_reset_applied_on_read(self):
        await self.risk.record_outcome("m1", -20.0)
        self.clock.advance(days=2)

        state = await self.risk.get_state()
        self.assertEqual(state.daily_pnl, 0.0)
        self.assertEqual(state.daily_losses, 0)
        self.assertEqual(state.daily_date, "2024-03-03")

        resets = await self.risk.get_audit_log(event_type=AUDIT_EVENTS.DAILY_RESET.value)
        self.assertEqual(len(resets), 1)
        self.assertEqual(resets[0].details["previous_date"], "2024-03-01")

    async def test_missed_reset_applied_before_fill(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES, pnl=-7.0)
        self.clock.advance(days=1)
        state = await self.risk.update_on_fill("m2", 5.0, 0.4, DIRECTIONS.NO)
        self.assertEqual(state.daily_trades, 1)
        self.assertEqual(state.daily_pnl, 0.0)


class TestPositionsAndOutcomes(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.risk = RuntimeRiskState(clock=FixedClock(DAY_ONE))

    async def test_fill_accumulates_with_average_price(self):
        await self.risk.update_on_fill("m1", 10.0, 0.4, DIRECTIONS.YES)
        state = await self.risk.update_on_fill("m1", 30.0, 0.6, DIRECTIONS.YES)
        position = state.positions["m1"]
        self.assertAlmostEqual(position.size, 40.0)
        self.assertAlmostEqual(position.entry_price, 0.55)
        self.assertEqual(state.daily_trades, 2)

    async def test_outcome_closes_position_and_counts_win(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES)
        state = await self.risk.record_outcome("m1", 10.0)
        self.assertNotIn("m1", state.positions)
        self.assertEqual(state.daily_wins, 1)
        self.assertEqual(state.win_rate, 1.0)

    async def test_partial_close(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES)
        state = await self.risk.record_outcome("m1", -2.0, closed_size=4.0)
        self.assertAlmostEqual(state.positions["m1"].size, 6.0)
        self.assertEqual(state.daily_losses, 1)

    async def test_non_finite_pnl_is_zeroed(self):
        state = await self.risk.record_outcome("m1", float("nan"))
        self.assertEqual(state.daily_pnl, 0.0)

    async def test_snapshots_are_copies(self):
        snapshot = await self.risk.get_state()
        snapshot.daily_pnl = -999.0
        snapshot.positions["fake"] = None
        state = self.risk.peek()
        self.assertEqual(state.daily_pnl, 0.0)
        self.assertNotIn("fake", state.positions)

    async def test_concurrent_fills_are_serialised(self):
        await asyncio.gather(*[
            self.risk.update_on_fill("m1", 1.0, 0.5, DIRECTIONS.YES) for _ in range(25)
        ])
        state = self.risk.peek()
        self.assertEqual(state.daily_trades, 25)
        self.assertAlmostEqual(state.positions["m1"].size, 25.0)


class TestCircuitBreaker(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.risk = RuntimeRiskState(failure_threshold=3, clock=FixedClock(DAY_ONE))

    async def test_trips_at_threshold(self):
        await self.risk.record_execution_failure("timeout")
        await self.risk.record_execution_failure("timeout")
        self.assertFalse(self.risk.peek().kill_switch_active)

        state = await self.risk.record_execution_failure("timeout")
        self.assertTrue(state.kill_switch_active)
        self.assertIn("3 consecutive execution failures", state.kill_switch_reason)

        entries = await self.risk.get_audit_log(event_type=AUDIT_EVENTS.KILL_SWITCH.value)
        self.assertEqual(entries[0].actor, CIRCUIT_BREAKER_ACTOR)

    async def test_success_resets_counter(self):
        await self.risk.record_execution_failure("x")
        await self.risk.record_execution_failure("x")
        await self.risk.record_execution_success()
        state = await self.risk.record_execution_failure("x")
        self.assertEqual(state.consecutive_failures, 1)
        self.assertFalse(state.kill_switch_active)

    async def test_deactivate_clears_failures(self):
        for _ in range(3):
            await self.risk.record_execution_failure("x")
        state = await self.risk.deactivate_kill_switch()
        self.assertFalse(state.kill_switch_active)
        self.assertIsNone(state.kill_switch_reason)
        self.assertEqual(state.consecutive_failures, 0)

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            RuntimeRiskState(failure_threshold=0)


class TestAuditAndDashboard(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.risk = RuntimeRiskState(limits=RiskLimitsConfig(max_daily_loss=100.0), clock=FixedClock(DAY_ONE))

    async def test_every_mutation_is_audited(self):
        await self.risk.update_on_fill("m1", 10.0, 0.5, DIRECTIONS.YES, decision_id="d1")
        await self.risk.set_execution_mode(EXECUTION_MODES.SHADOW)
        await self.risk.activate_kill_switch("halt")

        entries = await self.risk.get_audit_log()
        self.assertEqual(
            [e.event_type for e in entries],
            ["kill_switch", "mode_change", "fill"],
        )
        fill = entries[-1]
        self.assertEqual(fill.decision_id, "d1")
        self.assertEqual(fill.state_before["positions"], {})
        self.assertIn("m1", fill.state_after["positions"])

    async def test_audit_limit(self):
        for _ in range(5):
            await self.risk.update_on_fill("m1", 1.0, 0.5, DIRECTIONS.YES)
        self.assertEqual(len(await self.risk.get_audit_log(limit=2)), 2)

    async def test_dashboard(self):
        await self.risk.update_on_fill("m1", 20.0, 0.5, DIRECTIONS.YES, pnl=-30.0)
        dashboard = await self.risk.get_dashboard()
        self.assertEqual(dashboard["mode"], "paper")
        self.assertEqual(dashboard["positions"]["open"], 1)
        self.assertAlmostEqual(dashboard["positions"]["total_exposure"], 20.0)
        self.assertAlmostEqual(dashboard["limits"]["daily_loss_remaining"], 70.0)
        self.assertTrue(dashboard["can_trade"])

        await self.risk.activate_kill_switch("stop")
        dashboard = await self.risk.get_dashboard()
        self.assertFalse(dashboard["can_trade"])
        self.assertEqual(dashboard["kill_switch"]["reason"], "stop")


class TestPersistence(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmpdir.name) / "risk_state.db"
        self.clock = FixedClock(DAY_ONE)

    async def asyncTearDown(self):
        self.tmpdir.cleanup()

    async def test_state_survives_restart(self):
        store = SQLiteRiskStateStore(self.db_path)
        risk = RuntimeRiskState(store, clock=self.clock)
        await risk.update_on_fill("m1", 12.5, 0.45, DIRECTIONS.NO, pnl=-1.0)
        await risk.activate_kill_switch("persist me")
        store.close()

        store = SQLiteRiskStateStore(self.db_path)
        restored = RuntimeRiskState(store, clock=self.clock).peek()
        store.close()

        self.assertTrue(restored.kill_switch_active)
        self.assertEqual(restored.kill_switch_reason, "persist me")
        self.assertAlmostEqual(restored.daily_pnl, -1.0)
        self.assertEqual(restored.positions["m1"].direction, DIRECTIONS.NO)
        self.assertAlmostEqual(restored.positions["m1"].size, 12.5)

    async def test_audit_log_persisted_newest_first(self):
        store = SQLiteRiskStateStore(self.db_path)
        risk = RuntimeRiskState(store, clock=self.clock)
        await risk.update_on_fill("m1", 1.0, 0.5, DIRECTIONS.YES)
        self.clock.advance(minutes=1)
        await risk.set_execution_mode(EXECUTION_MODES.LIVE, actor="ops")

        entries = await risk.get_audit_log()
        store.close()

        self.assertEqual(entries[0].event_type, "mode_change")
        self.assertEqual(entries[0].actor, "ops")
        self.assertEqual(entries[0].details, {"from": "paper", "to": "live"})
        self.assertIsNotNone(entries[0].id)

    async def test_concurrent_mode_changes_record_a_chain(self):
        store = SQLiteRiskStateStore(self.db_path)
        risk = RuntimeRiskState(store, clock=self.clock)
        await asyncio.gather(
            risk.set_execution_mode(EXECUTION_MODES.SHADOW),
            risk.set_execution_mode(EXECUTION_MODES.LIVE),
        )
        entries = await risk.get_audit_log(event_type=AUDIT_EVENTS.MODE_CHANGE.value)
        store.close()

        changes = [e.details for e in entries]
        first = next(c for c in changes if c["from"] == "paper")
        second = next(c for c in changes if c is not first)
        self.assertEqual(second["from"], first["to"])
        self.assertEqual(risk.peek().execution_mode.value, second["to"])

    async def test_missed_reset_after_restart(self):
        store = SQLiteRiskStateStore(self.db_path)
        risk = RuntimeRiskState(store, clock=self.clock)
        await risk.record_outcome("m1", -40.0)
        store.close()

        self.clock.advance(days=1)
        store = SQLiteRiskStateStore(self.db_path)
        risk = RuntimeRiskState(store, clock=self.clock)
        state = await risk.get_state()
        store.close()

        self.assertEqual(state.daily_pnl, 0.0)
        self.assertEqual(state.daily_date, "2024-03-02")


class TestDailyResetScheduler(unittest.TestCase):
    def test_seconds_until_midnight(self):
        now = datetime(2024, 3, 1, 23, 0, tzinfo=timezone.utc)
        self.assertAlmostEqual(DailyResetScheduler.seconds_until_next_reset(now), 3600.0)

    def test_at_midnight_waits_full_day(self):
        now = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)
        self.assertAlmostEqual(DailyResetScheduler.seconds_until_next_reset(now), 86400.0)


if __name__ == "__main__":
    unittest.main()
