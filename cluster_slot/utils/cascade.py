import logging

from cluster_slot.models import TumbleStep
from cluster_slot.services.channels import Channel
from cluster_slot.utils.match_detector import find_winning_cluster

logger = logging.getLogger(__name__)

DEFAULT_MAX_TUMBLES = 50


class CascadeResult:
    def __init__(self, steps, capped):
        self.steps = steps
        self.capped = capped

    @property
    def cluster_count(self):
        return len(self.steps)


class CascadeResolver:
    """
    The tumble loop: remove the winning cluster, compact and refill, re-detect.

    Emits ``tumble_step(step)`` after every refill.
    """

    def __init__(self, grid, presentation, accumulator, max_tumbles=DEFAULT_MAX_TUMBLES):
        self.grid = grid
        self.presentation = presentation
        self.accumulator = accumulator
        self.max_tumbles = max_tumbles
        self.tumble_step = Channel('tumble_step')

    async def resolve(self, context):
        """
        Run tumbles until the grid holds no cluster or the ceiling is reached.

        Args:
            context (SpinContext): Supplies the bet used to size each step's win.

        Returns:
            CascadeResult: Every TumbleStep in order, and whether the ceiling stopped the loop.
        """
        rules = self.grid.rules
        steps = []
        capped = False

        match = find_winning_cluster(self.grid.cells, rules, context.bet)
        while match is not None:
            if len(steps) >= self.max_tumbles:
                capped = True
                logger.warning(f"Tumble ceiling of {self.max_tumbles} reached; "
                               f"leaving cluster of symbol {match.symbol_id} unresolved")
                break

            await self.presentation.play_removal_animation(match.cells)
            added = self.grid.drop_and_refill(match.cells)
            running_total = self.accumulator.add_cluster_win(match.win_amount)

            step = TumbleStep(
                index=len(steps) + 1,
                symbol_id=match.symbol_id,
                removed=match.cells,
                added=added,
                grid=self.grid.snapshot(),
                step_win=match.win_amount,
                running_total=running_total,
            )
            steps.append(step)
            logger.debug(f"Tumble {step.index}: removed {len(step.removed)}x symbol {step.symbol_id}, "
                         f"step win {step.step_win}, running total {running_total}")
            self.tumble_step.emit(step)

            match = find_winning_cluster(self.grid.cells, rules, context.bet)

        return CascadeResult(steps, capped)

    def close(self):
        self.tumble_step.clear()
