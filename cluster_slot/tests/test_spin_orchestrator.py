import asyncio
import random
import unittest
from decimal import Decimal
from unittest.mock import patch

from cluster_slot.app import create_game_session
from cluster_slot.error_codes import ErrorCodes
from cluster_slot.exceptions import InsufficientBalanceException, InvalidGridStateException, ValidationException
from cluster_slot.models import SpinMode, SpinPhase
from cluster_slot.services.presentation import HeadlessPresentation, InMemoryAccount
from cluster_slot.tests.fixtures import (
    BIG_WIN_CELLS,
    INVALID_CELLS,
    ManualConfig,
    NO_MATCH_CELLS,
    SCENARIO_A_CELLS,
    SCENARIO_B_CELLS,
    build_session,
    count_symbol,
)


def manual_session(grids, **kwargs):
    return build_session(grids, config_class=ManualConfig, **kwargs)


class TestSpinOrchestrator(unittest.IsolatedAsyncioTestCase):

    def tearDown(self):
        if getattr(self, 'session', None) is not None:
            self.session.close()

    async def test_losing_spin_debits_the_bet(self):
        self.session = manual_session([NO_MATCH_CELLS])
        outcome = await self.session.spin()

        self.assertIsNotNone(outcome)
        self.assertEqual(outcome.debited, Decimal('1'))
        self.assertEqual(outcome.total_win, Decimal('0'))
        self.assertEqual(outcome.steps, [])
        self.assertIsNone(outcome.win_overlay_tier)
        self.assertEqual(self.session.account.get_balance(), Decimal('999'))
        self.assertFalse(self.session.orchestrator.is_spinning)
        self.assertEqual(self.session.context.phase, SpinPhase.IDLE)

    async def test_single_tumble_win_is_credited(self):
        self.session = manual_session([SCENARIO_A_CELLS])
        outcome = await self.session.spin()

        self.assertEqual(len(outcome.steps), 1)
        self.assertEqual(outcome.cluster_win, Decimal('2'))
        self.assertEqual(outcome.total_win, Decimal('2'))
        self.assertEqual(self.session.account.get_balance(), Decimal('1001'))
        names = self.session.presentation.call_names()
        self.assertLess(names.index('play_reel_drop_animation'), names.index('play_removal_animation'))

    async def test_reentrant_request_is_dropped(self):
        self.session = manual_session([NO_MATCH_CELLS], presentation=HeadlessPresentation(delay=0.01))
        started = []
        self.session.orchestrator.spin_started.subscribe(started.append)

        first, second = await asyncio.gather(self.session.spin(), self.session.spin())

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(len(started), 1)
        self.assertEqual(self.session.grid.populate_calls, 1)
        self.assertEqual(self.session.account.get_balance(), Decimal('999'))

    async def test_request_while_flag_set_has_no_side_effects(self):
        self.session = manual_session([NO_MATCH_CELLS])
        self.session.context.is_spinning = True

        with self.assertLogs('cluster_slot.services.spin_service', level='DEBUG') as logs:
            result = await self.session.spin()

        self.assertIsNone(result)
        self.assertIn('Spin request ignored', logs.output[0])
        self.assertEqual(self.session.grid.populate_calls, 0)
        self.assertEqual(self.session.account.get_balance(), Decimal('1000'))
        self.assertTrue(self.session.context.is_spinning)

    async def test_feature_buy_forces_trigger_scatters(self):
        self.session = create_game_session(ManualConfig, rng=random.Random(3),
                                           account=InMemoryAccount(Decimal('1000')))
        self.session.context.scatter_chance = 0.0

        outcome = await self.session.spin(SpinMode.BUY_FEATURE)

        self.assertEqual(outcome.debited, Decimal('100'))
        self.assertGreaterEqual(count_symbol(outcome.initial_grid, 0), 4)
        self.assertTrue(outcome.bonus_triggered)
        self.assertTrue(self.session.context.is_bonus_round)
        self.assertFalse(self.session.context.buy_feature)
        self.assertEqual(self.session.context.min_scatter, self.session.rules.scatter_min_count)

    async def test_enhanced_bet_costs_more_and_resets(self):
        self.session = manual_session([NO_MATCH_CELLS])
        outcome = await self.session.spin(SpinMode.ENHANCED_BET)
        self.assertEqual(outcome.debited, Decimal('1.25'))
        self.assertFalse(self.session.context.enhanced_bet)
        self.assertEqual(self.session.context.scatter_chance, self.session.rules.scatter_chance)

    async def test_insufficient_balance_aborts_before_the_grid(self):
        self.session = manual_session([NO_MATCH_CELLS], balance='0.5')
        aborted = []
        self.session.orchestrator.spin_aborted.subscribe(aborted.append)

        result = await self.session.spin()

        self.assertIsNone(result)
        self.assertEqual(len(aborted), 1)
        self.assertIsInstance(aborted[0], InsufficientBalanceException)
        self.assertEqual(self.session.presentation.notices, aborted)
        self.assertEqual(self.session.grid.populate_calls, 0)
        self.assertEqual(self.session.account.get_balance(), Decimal('0.5'))
        self.assertFalse(self.session.orchestrator.is_spinning)

    async def test_invalid_grid_aborts_and_refunds(self):
        self.session = manual_session([INVALID_CELLS])
        aborted = []
        self.session.orchestrator.spin_aborted.subscribe(aborted.append)

        with self.assertLogs('cluster_slot.services.spin_service', level='ERROR') as logs:
            result = await self.session.spin()

        self.assertIsNone(result)
        self.assertIsInstance(aborted[0], InvalidGridStateException)
        self.assertIn('invalid grid', logs.output[0])
        self.assertEqual(self.session.account.get_balance(), Decimal('1000'))
        self.assertEqual(self.session.presentation.notices, [])
        self.assertFalse(self.session.orchestrator.is_spinning)

    async def test_unexpected_error_is_wrapped(self):
        self.session = manual_session([NO_MATCH_CELLS])
        aborted = []
        self.session.orchestrator.spin_aborted.subscribe(aborted.append)

        with patch.object(self.session.resolver, 'resolve', side_effect=RuntimeError('boom')):
            result = await self.session.spin()

        self.assertIsNone(result)
        self.assertEqual(aborted[0].error_code, ErrorCodes.INTERNAL_ERROR)
        self.assertEqual(self.session.account.get_balance(), Decimal('1000'))

    async def test_feature_buy_refused_during_bonus(self):
        self.session = manual_session([SCENARIO_B_CELLS, NO_MATCH_CELLS])
        await self.session.spin()
        self.assertTrue(self.session.context.is_bonus_round)
        balance = self.session.account.get_balance()
        aborted = []
        self.session.orchestrator.spin_aborted.subscribe(aborted.append)

        result = await self.session.spin(SpinMode.BUY_FEATURE)

        self.assertIsNone(result)
        self.assertEqual(aborted[0].error_code, ErrorCodes.FEATURE_UNAVAILABLE)
        self.assertEqual(self.session.account.get_balance(), balance)
        self.assertEqual(self.session.context.free_spins, 10)

    async def test_big_win_overlay_is_up_during_spin_settled(self):
        self.session = manual_session([BIG_WIN_CELLS, NO_MATCH_CELLS])
        overlay_flags = []
        closed = []
        orchestrator = self.session.orchestrator
        orchestrator.spin_settled.subscribe(lambda outcome: overlay_flags.append(orchestrator.win_overlay_active))
        orchestrator.win_overlay_closed.subscribe(lambda: closed.append(True))

        outcome = await self.session.spin()

        self.assertEqual(outcome.total_win, Decimal('50'))
        self.assertEqual(outcome.win_overlay_tier, 'epic')
        self.assertEqual(overlay_flags, [True])
        self.assertEqual(closed, [True])
        self.assertFalse(orchestrator.win_overlay_active)
        self.assertIn(('show_win_overlay', (Decimal('50'), Decimal('50'), 'epic')),
                      self.session.presentation.calls)
        self.assertEqual(self.session.account.get_balance(), Decimal('1049'))

    async def test_request_during_win_overlay_is_dropped(self):
        self.session = manual_session([BIG_WIN_CELLS, NO_MATCH_CELLS],
                                      presentation=HeadlessPresentation(delay=0.02))
        orchestrator = self.session.orchestrator
        started = []
        during_overlay = []
        orchestrator.spin_started.subscribe(started.append)
        orchestrator.win_overlay_shown.subscribe(
            lambda outcome: during_overlay.append(asyncio.ensure_future(self.session.spin())))

        first = await self.session.spin()
        self.assertEqual(first.win_overlay_tier, 'epic')
        self.assertIsNone(await during_overlay[0])
        self.assertEqual(len(started), 1)
        self.assertEqual(self.session.grid.populate_calls, 1)
        self.assertEqual(self.session.account.get_balance(), Decimal('1049'))
        self.assertFalse(orchestrator.is_spinning)

        # A spin started after the overlay owns the lock until it settles
        second = asyncio.ensure_future(self.session.spin())
        await asyncio.sleep(0)
        self.assertTrue(orchestrator.is_spinning)

        third = await self.session.spin()

        self.assertIsNone(third)
        self.assertTrue(orchestrator.is_spinning)
        self.assertIsNotNone(await second)
        self.assertEqual(len(started), 2)
        self.assertEqual(self.session.grid.populate_calls, 2)
        self.assertEqual(self.session.account.get_balance(), Decimal('1048'))
        self.assertFalse(orchestrator.is_spinning)
        self.assertEqual(self.session.context.phase, SpinPhase.IDLE)

    async def test_celebration_tiers(self):
        self.session = manual_session([NO_MATCH_CELLS])
        orchestrator = self.session.orchestrator
        self.assertIsNone(orchestrator.celebration_tier(Decimal('9.99')))
        self.assertEqual(orchestrator.celebration_tier(Decimal('10')), 'nice')
        self.assertEqual(orchestrator.celebration_tier(Decimal('25')), 'big')
        self.assertEqual(orchestrator.celebration_tier(Decimal('30')), 'mega')
        self.assertEqual(orchestrator.celebration_tier(Decimal('500')), 'super')

    async def test_full_bonus_round(self):
        self.session = manual_session([SCENARIO_B_CELLS, NO_MATCH_CELLS])
        spinning_at_bonus_end = []
        self.session.bonus.bonus_ended.subscribe(
            lambda total: spinning_at_bonus_end.append(self.session.orchestrator.is_spinning))

        trigger = await self.session.spin()
        self.assertTrue(trigger.bonus_triggered)
        self.assertEqual(trigger.free_spins_remaining, 10)

        outcomes = [await self.session.spin() for _ in range(10)]

        self.assertTrue(all(o.was_free_spin for o in outcomes))
        self.assertTrue(all(o.debited == Decimal('0') for o in outcomes))
        self.assertEqual([o.free_spins_remaining for o in outcomes], list(range(9, -1, -1)))
        self.assertTrue(outcomes[-1].bonus_ended)
        self.assertEqual(spinning_at_bonus_end, [True])
        self.assertFalse(self.session.context.is_bonus_round)
        self.assertEqual(self.session.account.get_balance(), Decimal('999'))

        after = await self.session.spin()
        self.assertFalse(after.was_free_spin)
        self.assertEqual(self.session.account.get_balance(), Decimal('998'))

    async def test_set_bet_validation(self):
        self.session = manual_session([NO_MATCH_CELLS])
        self.session.set_bet('2')
        self.assertEqual(self.session.context.bet, Decimal('2'))
        with self.assertRaises(ValidationException):
            self.session.set_bet('1000')
        self.assertEqual(self.session.orchestrator.spin_price(SpinMode.BUY_FEATURE), Decimal('200'))

    async def test_close_detaches_every_listener(self):
        self.session = manual_session([NO_MATCH_CELLS])
        self.session.orchestrator.spin_settled.subscribe(lambda outcome: None)
        self.session.close()
        self.assertEqual(self.session.orchestrator.spin_settled.subscriber_count, 0)
        self.assertEqual(self.session.bonus.bonus_entered.subscriber_count, 0)
        self.session = None


if __name__ == '__main__':
    unittest.main()
