import asyncio
import unittest
from decimal import Decimal

from cluster_slot.exceptions import AutoplayRejectedException, InsufficientBalanceException
from cluster_slot.models import AutoplaySession, ReadinessState, SpinMode
from cluster_slot.services.presentation import HeadlessPresentation
from cluster_slot.tests.fixtures import (
    BIG_WIN_CELLS,
    INVALID_CELLS,
    NO_MATCH_CELLS,
    RETRIGGER_CELLS,
    SCENARIO_B_CELLS,
    build_session,
)

WAIT = 5


class AutoplayTestCase(unittest.IsolatedAsyncioTestCase):

    def start_session(self, grids, **kwargs):
        self.session = build_session(grids, **kwargs)
        self.autoplay = self.session.autoplay
        self.settled = []
        self.reasons = []
        self.session.orchestrator.spin_settled.subscribe(self.settled.append)
        self.autoplay.autoplay_completed.subscribe(self.reasons.append)
        return self.session

    def tearDown(self):
        if getattr(self, 'session', None) is not None:
            self.session.close()


class TestAutoplaySessions(AutoplayTestCase):

    async def test_runs_requested_spins_then_completes(self):
        self.start_session([NO_MATCH_CELLS])
        started = []
        self.autoplay.autoplay_started.subscribe(started.append)

        self.assertTrue(self.autoplay.start(3))
        await self.autoplay.wait_completed(timeout=WAIT)

        self.assertEqual(started, [3])
        self.assertEqual(self.reasons, ['completed'])
        self.assertEqual(len(self.settled), 3)
        self.assertEqual(self.session.grid.populate_calls, 3)
        self.assertEqual(self.session.account.get_balance(), Decimal('997'))
        self.assertFalse(self.autoplay.is_active)
        self.assertEqual(self.autoplay.last_session.spins_issued, 3)

        # No fourth spin sneaks in afterwards
        await asyncio.sleep(0.05)
        self.assertEqual(len(self.settled), 3)

    async def test_enhanced_bet_session(self):
        self.start_session([NO_MATCH_CELLS])
        self.autoplay.start(2, mode=SpinMode.ENHANCED_BET)
        await self.autoplay.wait_completed(timeout=WAIT)
        self.assertTrue(all(o.mode is SpinMode.ENHANCED_BET for o in self.settled))
        self.assertEqual(self.session.account.get_balance(), Decimal('997.50'))

    async def test_add_spins_extends_the_session(self):
        self.start_session([NO_MATCH_CELLS])
        self.autoplay.start(2)
        self.autoplay.add_spins(3)
        self.assertEqual(self.autoplay.session.remaining, 5)

        await self.autoplay.wait_completed(timeout=WAIT)
        self.assertEqual(len(self.settled), 5)
        self.assertEqual(self.reasons, ['completed'])

    async def test_turbo_halves_the_pause_between_spins(self):
        self.start_session([NO_MATCH_CELLS])
        self.assertEqual(self.autoplay._spin_delay(0.1), 0.1)

        self.session.set_turbo(True)
        self.assertEqual(self.autoplay._spin_delay(0.1), 0.05)

        self.autoplay.start(3)
        await self.autoplay.wait_completed(timeout=WAIT)
        self.assertEqual(self.reasons, ['completed'])
        self.assertEqual(len(self.settled), 3)

    async def test_stop_lets_the_issued_spin_settle(self):
        self.start_session([NO_MATCH_CELLS], presentation=HeadlessPresentation(delay=0.05))
        self.autoplay.start(10)
        await asyncio.sleep(0.02)
        self.assertTrue(self.session.orchestrator.is_spinning)

        self.autoplay.stop()
        self.assertFalse(self.autoplay.has_pending_task)
        await self.autoplay.wait_idle()

        self.assertEqual(self.reasons, ['stopped'])
        self.assertEqual(len(self.settled), 1)
        self.assertEqual(self.session.grid.populate_calls, 1)

    async def test_abort_stops_the_session(self):
        self.start_session([INVALID_CELLS])
        self.autoplay.start(3)
        await self.autoplay.wait_completed(timeout=WAIT)

        self.assertEqual(self.reasons, ['aborted'])
        self.assertEqual(self.settled, [])
        self.assertEqual(self.session.account.get_balance(), Decimal('1000'))


class TestAutoplayRejections(AutoplayTestCase):

    async def test_invalid_requests_are_rejected(self):
        self.start_session([NO_MATCH_CELLS])
        with self.assertRaises(AutoplayRejectedException):
            self.autoplay.start(0)
        with self.assertRaises(AutoplayRejectedException):
            self.autoplay.start(5, mode=SpinMode.BUY_FEATURE)

    async def test_rejected_while_spinning(self):
        self.start_session([NO_MATCH_CELLS])
        self.session.context.is_spinning = True
        with self.assertRaises(AutoplayRejectedException) as ctx:
            self.autoplay.start(3)
        self.assertEqual(ctx.exception.details['reason'], 'spin_in_progress')
        self.assertIsNone(self.autoplay.session)

    async def test_rejected_while_a_session_is_active(self):
        self.start_session([NO_MATCH_CELLS])
        self.autoplay.start(3)
        with self.assertRaises(AutoplayRejectedException):
            self.autoplay.start(3)
        self.autoplay.stop()

    async def test_cannot_start_without_balance(self):
        self.start_session([NO_MATCH_CELLS], balance='0.5')
        self.assertFalse(self.autoplay.start(3))
        self.assertFalse(self.autoplay.is_active)
        self.assertIsInstance(self.session.presentation.notices[0], InsufficientBalanceException)

    async def test_stops_when_balance_runs_out(self):
        self.start_session([NO_MATCH_CELLS], balance='2')
        self.autoplay.start(5)
        await self.autoplay.wait_completed(timeout=WAIT)

        self.assertEqual(len(self.settled), 2)
        self.assertEqual(self.reasons, ['insufficient_balance'])
        self.assertEqual(len(self.session.presentation.notices), 1)
        self.assertEqual(self.session.account.get_balance(), Decimal('0'))


class TestAutoplayReadiness(AutoplayTestCase):

    async def test_next_spin_waits_for_the_overlay(self):
        self.start_session([BIG_WIN_CELLS], presentation=HeadlessPresentation(delay=0.02))
        orchestrator = self.session.orchestrator
        events = []
        overlay_up_at_start = []
        orchestrator.spin_started.subscribe(lambda grid: events.append('started'))
        orchestrator.spin_started.subscribe(lambda grid: overlay_up_at_start.append(orchestrator.win_overlay_active))
        orchestrator.win_overlay_closed.subscribe(lambda: events.append('closed'))

        self.autoplay.start(2)
        await self.autoplay.wait_completed(timeout=WAIT)

        self.assertEqual(events, ['started', 'closed', 'started', 'closed'])
        self.assertEqual(overlay_up_at_start, [False, False])
        self.assertTrue(all(o.win_overlay_tier == 'epic' for o in self.settled))

    async def test_lost_overlay_signal_is_recovered(self):
        self.start_session([BIG_WIN_CELLS, NO_MATCH_CELLS])
        # Drop the scheduler's listener so only the stall check can make it ready again
        self.session.orchestrator.win_overlay_closed.clear()

        with self.assertLogs('cluster_slot.services.autoplay_scheduler', level='INFO') as logs:
            self.autoplay.start(2)
            await self.autoplay.wait_completed(timeout=WAIT)

        self.assertEqual(len(self.settled), 2)
        self.assertEqual(self.reasons, ['completed'])
        self.assertEqual(self.autoplay.last_session.stall_recoveries, 1)
        self.assertTrue(any('stall recovery' in line for line in logs.output))

    async def test_repeated_stall_recovery_warns(self):
        self.start_session([NO_MATCH_CELLS])
        self.autoplay.session = AutoplaySession(5)
        self.autoplay.session.readiness = ReadinessState.WAITING_OVERLAY
        self.autoplay.session.consecutive_stall_recoveries = 1

        with self.assertLogs('cluster_slot.services.autoplay_scheduler', level='WARNING') as logs:
            await self.autoplay._stall_check(0)

        self.assertIn('2 times in a row', logs.output[0])
        self.assertIs(self.autoplay.session.readiness, ReadinessState.READY)
        self.assertTrue(self.autoplay.has_pending_task)
        self.autoplay.stop()

    async def test_stall_check_rearms_while_engine_busy(self):
        self.start_session([NO_MATCH_CELLS])
        self.autoplay.session = AutoplaySession(5)
        self.autoplay.session.readiness = ReadinessState.WAITING_ANIMATION
        self.session.context.is_spinning = True

        await self.autoplay._stall_check(0)

        self.assertEqual(self.autoplay.session.stall_recoveries, 0)
        self.assertEqual(self.autoplay._task_kind, 'stall')
        self.session.context.is_spinning = False
        self.autoplay.stop()


class TestFreeSpinsAutoplay(AutoplayTestCase):

    async def test_bonus_entry_starts_a_free_spins_session(self):
        self.start_session([SCENARIO_B_CELLS, NO_MATCH_CELLS])
        started = []
        self.autoplay.autoplay_started.subscribe(started.append)

        trigger = await self.session.spin()
        self.assertTrue(trigger.bonus_triggered)
        self.assertTrue(self.autoplay.is_active)
        self.assertTrue(self.autoplay.session.free_spins_only)

        await self.autoplay.wait_completed(timeout=WAIT)

        free = [o for o in self.settled if o.was_free_spin]
        self.assertEqual(started, [10])
        self.assertEqual(len(free), 10)
        self.assertTrue(free[-1].bonus_ended)
        self.assertEqual(self.reasons, ['bonus_complete'])
        self.assertFalse(self.session.context.is_bonus_round)
        self.assertEqual(self.session.account.get_balance(), Decimal('999'))

    async def test_retrigger_extends_the_free_spins_session(self):
        self.start_session([SCENARIO_B_CELLS, RETRIGGER_CELLS, NO_MATCH_CELLS])
        await self.session.spin()
        await self.autoplay.wait_completed(timeout=WAIT)

        free = [o for o in self.settled if o.was_free_spin]
        self.assertEqual(len(free), 15)
        self.assertTrue(free[0].retriggered)
        self.assertEqual(self.reasons, ['bonus_complete'])

    async def test_base_session_carries_on_through_the_bonus(self):
        self.start_session([SCENARIO_B_CELLS, NO_MATCH_CELLS])
        self.autoplay.start(2)
        await self.autoplay.wait_completed(timeout=WAIT)

        paid = [o for o in self.settled if not o.was_free_spin]
        free = [o for o in self.settled if o.was_free_spin]
        self.assertEqual(len(paid), 2)
        self.assertEqual(len(free), 10)
        self.assertEqual(self.reasons, ['completed'])
        self.assertFalse(self.settled[-1].was_free_spin)
        self.assertEqual(self.session.account.get_balance(), Decimal('998'))


if __name__ == '__main__':
    unittest.main()
