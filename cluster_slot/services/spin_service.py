"""
Spin Orchestrator
Runs one spin from request to settlement: debit, population, tumbles, bonus
evaluation, credit and the celebration overlay.
"""

import logging
from decimal import Decimal

from cluster_slot.error_codes import ErrorCodes
from cluster_slot.exceptions import (
    AppException,
    GameLogicException,
    InsufficientBalanceException,
    InvalidGridStateException,
    ReentrantSpinAttempt,
)
from cluster_slot.models import SpinMode, SpinOutcome, SpinPhase
from cluster_slot.services.channels import Channel
from cluster_slot.utils.game_logger import GameEventLogger

logger = logging.getLogger(__name__)


class SpinOrchestrator:
    """
    Per-spin state machine: Idle -> Spinning -> Resolving -> Settled -> Idle.

    ``context.is_spinning`` is the non-blocking mutex: a request that arrives
    while it is set, or while the win overlay of the previous spin is still
    up, is dropped without side effects.

    Channels:
        spin_started(grid), spin_settled(outcome), spin_aborted(exception),
        win_overlay_shown(outcome), win_overlay_closed()
    """

    def __init__(self, rules, context, grid, resolver, bonus, accumulator, account, presentation):
        self.rules = rules
        self.context = context
        self.grid = grid
        self.resolver = resolver
        self.bonus = bonus
        self.accumulator = accumulator
        self.account = account
        self.presentation = presentation

        self.spin_count = 0
        self.win_overlay_active = False
        self.last_outcome = None
        self._debited = Decimal('0')

        self.spin_started = Channel('spin_started')
        self.spin_settled = Channel('spin_settled')
        self.spin_aborted = Channel('spin_aborted')
        self.win_overlay_shown = Channel('win_overlay_shown')
        self.win_overlay_closed = Channel('win_overlay_closed')

    @property
    def is_spinning(self):
        return self.context.is_spinning

    @property
    def is_idle(self):
        return not self.context.is_spinning and not self.win_overlay_active

    def next_spin_is_free(self):
        return self.context.is_bonus_round and self.context.free_spins > 0

    def spin_price(self, mode=SpinMode.NORMAL):
        """Amount debited for a paid spin in ``mode``."""
        bet = self.context.bet
        if mode is SpinMode.BUY_FEATURE:
            return bet * Decimal(self.rules.feature_buy_multiplier)
        if mode is SpinMode.ENHANCED_BET:
            return bet * Decimal(self.rules.enhanced_bet_multiplier)
        return bet

    def can_afford(self, mode=SpinMode.NORMAL):
        if self.next_spin_is_free():
            return True
        return self.account.get_balance() >= self.spin_price(mode)

    def celebration_tier(self, total_win):
        """
        Name of the win rank reached by ``total_win``, or None below the celebration threshold.
        """
        if not self.context.bet:
            return None
        multiple = Decimal(total_win) / self.context.bet
        if multiple < Decimal(self.rules.celebration_threshold):
            return None
        tier = None
        for name, threshold in sorted(self.rules.win_ranks.items(), key=lambda item: item[1]):
            if multiple >= Decimal(threshold):
                tier = name
        return tier or 'win'

    async def spin(self, mode=SpinMode.NORMAL):
        """
        Play one spin.

        Args:
            mode (SpinMode): NORMAL, BUY_FEATURE (forces the trigger scatters) or
                ENHANCED_BET (higher price, better scatter odds). Ignored for free spins.

        Returns:
            SpinOutcome | None: The settled outcome, or None when the request was
                dropped (spin already running or its win
                overlay still up) or the spin was aborted.
        """
        if self.context.is_spinning or self.win_overlay_active:
            rejected = ReentrantSpinAttempt(details={'spin_count': self.spin_count,
                                                 'win_overlay_active': self.win_overlay_active})
            logger.debug(f"Spin request ignored: {rejected.status_message}")
            return None

        self.context.is_spinning = True
        self.context.phase = SpinPhase.SPINNING
        self._debited = Decimal('0')
        try:
            return await self._run_spin(mode)
        except AppException as e:
            self._abort(e)
            return None
        except Exception as e:
            logger.error(f"Unexpected error during spin {self.spin_count}: {type(e).__name__} - {str(e)}",
                         exc_info=True)
            self._abort(GameLogicException("Spin failed", details={'error': str(e)},
                                           error_code=ErrorCodes.INTERNAL_ERROR))
            return None
        finally:
            self.context.is_spinning = False
            self.context.phase = SpinPhase.IDLE
            self.context.reset_spin_parameters()

    async def _run_spin(self, mode):
        ctx = self.context
        is_free = self.next_spin_is_free()

        if mode is SpinMode.BUY_FEATURE and ctx.is_bonus_round:
            raise GameLogicException("Feature buy is unavailable during the bonus round",
                                     error_code=ErrorCodes.FEATURE_UNAVAILABLE)

        if is_free:
            mode = SpinMode.NORMAL
        else:
            self._debit(self.spin_price(mode))
        self._apply_mode(mode)

        self.spin_count += 1
        self.accumulator.begin_spin(in_bonus=is_free)

        self.grid.populate()
        self.grid.place_scatters(ctx.min_scatter, ctx.max_scatter, ctx.scatter_chance)
        self.grid.place_bombs(ctx.min_bomb, ctx.max_bomb, ctx.bomb_chance, ctx.is_bonus_round)
        self.grid.validate()

        outcome = SpinOutcome(self.spin_count, mode, ctx.bet, self._debited, is_free, self.grid.snapshot())
        self.spin_started.emit(outcome.initial_grid)
        await self.presentation.play_reel_drop_animation(outcome.initial_grid)

        ctx.phase = SpinPhase.RESOLVING
        if is_free:
            outcome.scatter_award = self.bonus.apply_initial_award()

        cascade = await self.resolver.resolve(ctx)
        outcome.steps = cascade.steps
        outcome.tumble_capped = cascade.capped
        if is_free:
            self.bonus.apply_bomb_multiplier(self.grid.cells, outcome)
        outcome.cluster_win = self.accumulator.cluster_win
        outcome.final_grid = self.grid.snapshot()

        await self.bonus.evaluate(self.grid.cells, outcome)

        await self._settle(outcome, is_free)
        return outcome

    def _debit(self, price):
        balance = self.account.get_balance()
        if balance < price:
            raise InsufficientBalanceException(details={'balance': str(balance), 'required': str(price)})
        self.account.debit(price)
        self._debited = price

    def _apply_mode(self, mode):
        ctx = self.context
        if mode is SpinMode.BUY_FEATURE:
            ctx.buy_feature = True
            ctx.min_scatter = self.rules.feature_buy_scatters
            ctx.max_scatter = max(ctx.max_scatter, ctx.min_scatter)
        elif mode is SpinMode.ENHANCED_BET:
            ctx.enhanced_bet = True
            ctx.scatter_chance = ctx.scatter_chance * self.rules.enhanced_scatter_factor

    async def _settle(self, outcome, is_free):
        ctx = self.context
        outcome.total_win = self.accumulator.total_win
        if outcome.total_win > 0:
            self.account.credit(outcome.total_win)
        self._debited = Decimal('0')

        if is_free:
            await self.bonus.settle_free_spin(outcome)
        outcome.free_spins_remaining = ctx.free_spins

        tier = self.celebration_tier(outcome.total_win)
        outcome.win_overlay_tier = tier

        ctx.phase = SpinPhase.SETTLED
        ctx.is_spinning = False
        if tier is not None:
            self.win_overlay_active = True

        self.last_outcome = outcome
        GameEventLogger.log_spin_settled(outcome)
        self.spin_settled.emit(outcome)

        if tier is not None:
            self.win_overlay_shown.emit(outcome)
            try:
                await self.presentation.show_win_overlay(outcome.total_win, outcome.win_multiple, tier)
            finally:
                self.win_overlay_active = False
                self.win_overlay_closed.emit()

    def _abort(self, exc):
        if isinstance(exc, InvalidGridStateException):
            logger.error(f"Spin {self.spin_count} aborted, invalid grid: {exc.details}")
        elif isinstance(exc, InsufficientBalanceException):
            logger.info(f"Spin aborted: {exc.status_message} {exc.details}")
        else:
            logger.warning(f"Spin aborted: [{exc.error_code}] {exc.status_message}")

        if self._debited:
            self.account.credit(self._debited)
            logger.info(f"Refunded {self._debited} for aborted spin")
            self._debited = Decimal('0')

        if exc.player_visible:
            self.presentation.show_notice(exc)
        self.spin_aborted.emit(exc)

    def close(self):
        for channel in (self.spin_started, self.spin_settled, self.spin_aborted,
                        self.win_overlay_shown, self.win_overlay_closed):
            channel.clear()
