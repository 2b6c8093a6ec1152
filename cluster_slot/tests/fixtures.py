"""Shared builders for the engine tests: known grids and a scripted symbol source."""
import itertools
from decimal import Decimal

from cluster_slot.app import GameSession
from cluster_slot.config import TestingConfig
from cluster_slot.models import SpinContext
from cluster_slot.schemas import load_game_config
from cluster_slot.services.autoplay_scheduler import AutoplayScheduler
from cluster_slot.services.bonus_service import BonusTrigger, FreeSpinCounter
from cluster_slot.services.presentation import HeadlessPresentation, InMemoryAccount
from cluster_slot.services.spin_service import SpinOrchestrator
from cluster_slot.utils.cascade import CascadeResolver
from cluster_slot.utils.grid import SymbolGrid
from cluster_slot.utils.win_tracker import WinAccumulator

ROWS, COLUMNS = 5, 6
SCATTER = 0


class ManualConfig(TestingConfig):
    """No automatic free-spins session; the test drives every spin itself."""
    AUTO_PLAY_FREE_SPINS = False


def load_rules():
    return load_game_config('sugar_wonderland')


def build_cells(symbol_id=None, count=0, scatters=0):
    """
    5x6 grid with ``count`` cells of ``symbol_id``, then ``scatters`` scatters,
    then filler cycling through the other regular symbols (at most 4 of each).
    """
    filler_ids = [s for s in range(1, 10) if s != symbol_id]
    flat = [symbol_id] * count + [SCATTER] * scatters
    filler = itertools.cycle(filler_ids)
    while len(flat) < ROWS * COLUMNS:
        flat.append(next(filler))
    return [flat[r * COLUMNS:(r + 1) * COLUMNS] for r in range(ROWS)]


NO_MATCH_CELLS = build_cells()

# Exactly 8 cells of symbol 3, every other symbol at most 3 times
SCENARIO_A_CELLS = [
    [3, 3, 3, 3, 3, 3],
    [3, 3, 1, 2, 4, 5],
    [6, 7, 8, 9, 1, 2],
    [4, 5, 6, 7, 8, 9],
    [1, 2, 4, 5, 6, 7],
]

# Four scatters, no cluster
SCENARIO_B_CELLS = [
    [0, 0, 0, 0, 5, 6],
    [7, 8, 9, 1, 2, 3],
    [4, 5, 6, 7, 8, 9],
    [1, 2, 3, 4, 5, 6],
    [7, 8, 9, 1, 2, 3],
]

# Three scatters, no cluster: retriggers inside the bonus only
RETRIGGER_CELLS = [
    [0, 0, 0, 4, 5, 6],
    [7, 8, 9, 1, 2, 3],
    [4, 5, 6, 7, 8, 9],
    [1, 2, 3, 4, 5, 6],
    [7, 8, 9, 1, 2, 3],
]

# Twelve cells of symbol 1: tier 3, pays 50x bet
BIG_WIN_CELLS = [
    [1, 1, 1, 1, 1, 1],
    [1, 1, 1, 1, 1, 1],
    [2, 3, 4, 5, 6, 7],
    [8, 9, 2, 3, 4, 5],
    [6, 7, 8, 9, 2, 3],
]

INVALID_CELLS = [row[:] for row in NO_MATCH_CELLS]
INVALID_CELLS[2][3] = 99


class ScriptedGrid(SymbolGrid):
    """
    SymbolGrid that populates from a queue of fixed grids and refills from a fixed cycle.

    Scatter and bomb placement are disabled so a scripted grid lands exactly
    as written. Once the queue is empty the last grid repeats.
    """

    def __init__(self, rules, grids, refill=None):
        super().__init__(rules)
        self.grids = [[row[:] for row in grid] for grid in grids]
        self.refill = itertools.cycle(refill or rules.symbol_ids)
        self.populate_calls = 0
        self._last = self.grids[0] if self.grids else NO_MATCH_CELLS

    def populate(self):
        self.populate_calls += 1
        if self.grids:
            self._last = self.grids.pop(0)
        self.cells = [row[:] for row in self._last]

    def place_scatters(self, min_scatter, max_scatter, chance):
        return self.count(self.rules.scatter_symbol_id)

    def place_bombs(self, min_bomb, max_bomb, chance, is_bonus_round):
        return 0

    def generate_column(self, length):
        return [next(self.refill) for _ in range(length)]


def build_session(grids, balance='1000', bet='1', rules=None, config_class=TestingConfig,
                  presentation=None, refill=None, free_spin_authority=None, max_tumbles=50):
    """Wire a GameSession around a ScriptedGrid."""
    rules = rules or load_rules()
    presentation = presentation or HeadlessPresentation()
    account = InMemoryAccount(Decimal(balance))
    context = SpinContext(rules, bet)
    grid = ScriptedGrid(rules, grids, refill=refill)
    accumulator = WinAccumulator()
    resolver = CascadeResolver(grid, presentation, accumulator, max_tumbles=max_tumbles)
    bonus = BonusTrigger(rules, context, presentation, accumulator, FreeSpinCounter(free_spin_authority))
    orchestrator = SpinOrchestrator(rules, context, grid, resolver, bonus, accumulator, account, presentation)
    autoplay = AutoplayScheduler(
        orchestrator, bonus, account, presentation,
        first_spin_delay=config_class.AUTOPLAY_FIRST_SPIN_DELAY,
        next_spin_delay=config_class.AUTOPLAY_NEXT_SPIN_DELAY,
        stall_timeout=config_class.AUTOPLAY_STALL_TIMEOUT,
        auto_play_free_spins=config_class.AUTO_PLAY_FREE_SPINS,
    )
    return GameSession('test-session', rules, config_class, context, grid, accumulator, resolver, bonus,
                       orchestrator, autoplay, account, presentation)


def count_symbol(cells, symbol_id):
    return sum(row.count(symbol_id) for row in cells)
