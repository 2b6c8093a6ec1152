import logging
from decimal import Decimal

from cluster_slot.models import BonusState
from cluster_slot.services.channels import Channel
from cluster_slot.utils.game_logger import GameEventLogger
from cluster_slot.utils.match_detector import (
    check_scatter_trigger,
    free_spins_for_retrigger,
    free_spins_for_trigger,
    scatter_trigger_award,
)

logger = logging.getLogger(__name__)


class FreeSpinCounter:
    """
    The one authoritative free-spin count for a session.

    Without an authority the counter is written locally by award/consume.
    When ``authority`` (a zero-argument callable returning the current count,
    e.g. a server-side session) is attached it is the sole writer: award and
    consume only re-sync from it.
    """

    def __init__(self, authority=None):
        self.authority = authority
        self._value = 0
        if authority is not None:
            self.sync()

    @property
    def value(self):
        return self._value

    @property
    def is_external(self):
        return self.authority is not None

    def sync(self):
        if self.authority is not None:
            self._value = max(0, int(self.authority()))
        return self._value

    def award(self, spins):
        if self.is_external:
            return self.sync()
        self._value += int(spins)
        return self._value

    def consume(self):
        if self.is_external:
            return self.sync()
        self._value = max(0, self._value - 1)
        return self._value

    def reset(self):
        if self.is_external:
            return self.sync()
        self._value = 0
        return self._value

    def __repr__(self):
        source = 'external' if self.is_external else 'local'
        return f"<FreeSpinCounter {self._value} ({source})>"


def calculate_bomb_multiplier(cells, rules):
    """
    Sum of the multipliers of every bomb on the grid, or 1 when there are none.
    """
    total = 0
    for row in cells:
        for symbol_id in row:
            if rules.is_bomb(symbol_id):
                total += rules.bomb_multiplier(symbol_id)
    return total if total > 0 else 1


class BonusTrigger:
    """
    BASE / BONUS state machine.

    Owns entry into the bonus round, retriggers, consumption of free spins
    and the return to the base game. Emits ``bonus_entered(free_spins)``,
    ``free_spins_added(n)`` and ``bonus_ended(total_bonus_win)``.
    """

    def __init__(self, rules, context, presentation, accumulator, counter=None):
        self.rules = rules
        self.context = context
        self.presentation = presentation
        self.accumulator = accumulator
        self.counter = counter or FreeSpinCounter()
        self.state = BonusState.BASE
        self._pending_initial_award = Decimal('0')
        self._initial_award_paid = True

        self.bonus_entered = Channel('bonus_entered')
        self.free_spins_added = Channel('free_spins_added')
        self.bonus_ended = Channel('bonus_ended')

    @property
    def in_bonus(self):
        return self.state is BonusState.BONUS

    async def evaluate(self, cells, outcome):
        """
        Check the settled grid for a trigger (BASE) or retrigger (BONUS).

        Args:
            cells (list[list[int]]): Final grid after all tumbles.
            outcome (SpinOutcome): Updated with scatter count and any bonus transition.
        """
        match = check_scatter_trigger(cells, self.rules, self.in_bonus)
        outcome.scatter_count = match.scatter_count
        if not match.is_scatter_trigger:
            return
        if self.in_bonus:
            await self._retrigger(match.scatter_count, outcome)
        else:
            await self._enter_bonus(match.scatter_count, outcome)

    async def _enter_bonus(self, scatter_count, outcome):
        spins = free_spins_for_trigger(self.rules, scatter_count)
        self.state = BonusState.BONUS
        self.context.is_bonus_round = True
        self.accumulator.reset_bonus()
        self.presentation.set_bonus_scene(True)

        self.counter.reset()
        self.context.free_spins = self.counter.award(spins)

        award = scatter_trigger_award(self.rules, scatter_count, self.context.bet)
        self._pending_initial_award = award
        self._initial_award_paid = not award

        outcome.bonus_triggered = True
        outcome.free_spins_awarded = self.context.free_spins
        logger.info(f"Bonus triggered by {scatter_count} scatters: {self.context.free_spins} free spins")
        GameEventLogger.log_bonus_event('entered', free_spins=self.context.free_spins,
                                        details={'scatter_count': scatter_count, 'initial_award': award})
        self.bonus_entered.emit(self.context.free_spins)
        await self.presentation.show_bonus_trigger_popup(self.context.free_spins)

    async def _retrigger(self, scatter_count, outcome):
        added = free_spins_for_retrigger(self.rules, scatter_count)
        if added <= 0:
            return
        self.context.free_spins = self.counter.award(added)

        outcome.retriggered = True
        outcome.free_spins_awarded = added
        logger.info(f"Bonus retriggered by {scatter_count} scatters: +{added} free spins "
                    f"({self.context.free_spins} remaining)")
        GameEventLogger.log_bonus_event('retriggered', free_spins=self.context.free_spins,
                                        details={'scatter_count': scatter_count, 'added': added})
        self.free_spins_added.emit(added)
        await self.presentation.show_retrigger_popup(added)

    def apply_initial_award(self):
        """
        Credit the scatter award configured for the trigger, once, on the first bonus spin.

        Returns:
            Decimal: The amount credited (0 when none was pending).
        """
        if self._initial_award_paid or not self.in_bonus:
            return Decimal('0')
        amount = self._pending_initial_award
        self._initial_award_paid = True
        self._pending_initial_award = Decimal('0')
        self.accumulator.add_award(amount)
        logger.info(f"Initial scatter award of {amount} credited")
        return amount

    def apply_bomb_multiplier(self, cells, outcome):
        """Multiply a bonus spin's cluster win by the sum of bomb multipliers on the grid."""
        if not outcome.was_free_spin or not self.accumulator.cluster_win:
            return 1
        multiplier = calculate_bomb_multiplier(cells, self.rules)
        if multiplier > 1:
            extra = self.accumulator.apply_cluster_multiplier(multiplier)
            logger.debug(f"Bomb multiplier x{multiplier} added {extra}")
        outcome.bomb_multiplier = multiplier
        return multiplier

    async def settle_free_spin(self, outcome):
        """
        Consume one free spin and leave the bonus when none remain.

        Called during settlement of a spin that started inside the bonus round.
        A spin that retriggered never ends the bonus.
        """
        self.context.free_spins = self.counter.consume()
        outcome.free_spins_remaining = self.context.free_spins
        if self.context.free_spins <= 0 and not outcome.retriggered:
            await self._exit_bonus(outcome)

    async def _exit_bonus(self, outcome):
        total = self.accumulator.total_bonus_win
        self.state = BonusState.BASE
        self.context.is_bonus_round = False
        self.context.free_spins = 0
        self._initial_award_paid = True
        self._pending_initial_award = Decimal('0')
        self.presentation.set_bonus_scene(False)
        await self.presentation.show_bonus_summary(total)

        outcome.bonus_ended = True
        logger.info(f"Bonus round ended with total bonus win {total}")
        GameEventLogger.log_bonus_event('ended', free_spins=0, total_bonus_win=total)
        self.bonus_ended.emit(total)

    def close(self):
        self.bonus_entered.clear()
        self.free_spins_added.clear()
        self.bonus_ended.clear()
