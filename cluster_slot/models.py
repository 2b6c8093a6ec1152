"""
Plain in-memory models for one game session.

Nothing here is persisted: the grid, the spin context and the autoplay
session live only as long as the GameSession that owns them.
"""
import enum
from collections import namedtuple
from decimal import Decimal
from typing import Dict, List, Optional


Cell = namedtuple('Cell', ['row', 'col'])


class SpinMode(enum.Enum):
    NORMAL = 'normal'
    BUY_FEATURE = 'buy_feature'
    ENHANCED_BET = 'enhanced_bet'


class SpinPhase(enum.Enum):
    IDLE = 'idle'
    SPINNING = 'spinning'
    RESOLVING = 'resolving'
    SETTLED = 'settled'


class BonusState(enum.Enum):
    BASE = 'base'
    BONUS = 'bonus'


class ReadinessState(enum.Enum):
    READY = 'ready'
    WAITING_ANIMATION = 'waiting_animation'
    WAITING_OVERLAY = 'waiting_overlay'


class MatchKind(enum.Enum):
    CLUSTER = 'cluster'
    SCATTER_TRIGGER = 'scatter_trigger'
    NONE = 'none'


class PayoutTier:
    def __init__(self, min_count, payouts):
        self.min_count = min_count
        self.payouts = payouts  # symbol id -> bet multiple

    def __repr__(self):
        return f"<PayoutTier min_count={self.min_count}>"


class BombBand:
    def __init__(self, name, weight, first_id, last_id):
        self.name = name
        self.weight = weight
        self.first_id = first_id
        self.last_id = last_id

    def __repr__(self):
        return f"<BombBand {self.name} {self.first_id}-{self.last_id} weight={self.weight}>"


class GameRules:
    """Validated game rules loaded from a slot's gameConfig.json."""

    def __init__(self, name, short_name, rows, columns, symbol_ids, difficulty_symbols,
                 match_threshold, payout_tiers, scatter_symbol_id, scatter_cluster_payouts,
                 scatter_min_count, scatter_max_count, scatter_chance, trigger_count,
                 retrigger_count, free_spins_awarded, retrigger_spins_awarded,
                 scatter_trigger_payouts, bomb_first_id, bomb_multipliers, bomb_bands,
                 bomb_min_count, bomb_max_count, bomb_chance, default_bet, min_bet, max_bet,
                 feature_buy_multiplier, feature_buy_scatters, enhanced_bet_multiplier,
                 enhanced_scatter_factor, celebration_threshold, win_ranks, max_tumbles,
                 symbol_names=None):
        self.name = name
        self.short_name = short_name
        self.rows = rows
        self.columns = columns
        self.symbol_ids: List[int] = list(symbol_ids)
        self.symbol_names: Dict[int, str] = symbol_names or {}
        self.difficulty_symbols = difficulty_symbols
        self.match_threshold = match_threshold
        self.payout_tiers: List[PayoutTier] = sorted(payout_tiers, key=lambda t: t.min_count)
        self.scatter_symbol_id = scatter_symbol_id
        self.scatter_cluster_payouts: List[Decimal] = list(scatter_cluster_payouts)
        self.scatter_min_count = scatter_min_count
        self.scatter_max_count = scatter_max_count
        self.scatter_chance = scatter_chance
        self.trigger_count = trigger_count
        self.retrigger_count = retrigger_count
        self.free_spins_awarded: Dict[int, int] = dict(free_spins_awarded)
        self.retrigger_spins_awarded: Dict[int, int] = dict(retrigger_spins_awarded)
        self.scatter_trigger_payouts: Dict[int, Decimal] = dict(scatter_trigger_payouts)
        self.bomb_first_id = bomb_first_id
        self.bomb_multipliers: List[int] = list(bomb_multipliers)
        self.bomb_bands: List[BombBand] = list(bomb_bands)
        self.bomb_min_count = bomb_min_count
        self.bomb_max_count = bomb_max_count
        self.bomb_chance = bomb_chance
        self.default_bet = default_bet
        self.min_bet = min_bet
        self.max_bet = max_bet
        self.feature_buy_multiplier = feature_buy_multiplier
        self.feature_buy_scatters = feature_buy_scatters
        self.enhanced_bet_multiplier = enhanced_bet_multiplier
        self.enhanced_scatter_factor = enhanced_scatter_factor
        self.celebration_threshold = celebration_threshold
        self.win_ranks: Dict[str, Decimal] = dict(win_ranks)
        self.max_tumbles = max_tumbles

    @property
    def bomb_ids(self) -> range:
        return range(self.bomb_first_id, self.bomb_first_id + len(self.bomb_multipliers))

    def is_bomb(self, symbol_id) -> bool:
        return symbol_id in self.bomb_ids

    def bomb_multiplier(self, symbol_id) -> int:
        return self.bomb_multipliers[symbol_id - self.bomb_first_id]

    @property
    def valid_symbol_ids(self) -> set:
        return set(self.symbol_ids) | {self.scatter_symbol_id} | set(self.bomb_ids)

    def tier_for_count(self, count) -> Optional[int]:
        """Return the 0-based payout tier index for a cluster size, or None below threshold."""
        if count < self.match_threshold:
            return None
        tier_index = None
        for index, tier in enumerate(self.payout_tiers):
            if count >= tier.min_count:
                tier_index = index
        return tier_index

    def __repr__(self):
        return f"<GameRules {self.short_name} {self.rows}x{self.columns}>"


class SpinContext:
    """Per-session spin state. Written only by the orchestrator and the bonus trigger."""

    def __init__(self, rules: GameRules, bet=None):
        self.rules = rules
        self.bet: Decimal = Decimal(bet) if bet is not None else rules.default_bet
        self.buy_feature = False
        self.enhanced_bet = False
        self.is_bonus_round = False
        self.free_spins = 0
        self.turbo = False
        self.is_spinning = False
        self.phase = SpinPhase.IDLE
        self.min_scatter = rules.scatter_min_count
        self.max_scatter = rules.scatter_max_count
        self.scatter_chance = rules.scatter_chance
        self.min_bomb = rules.bomb_min_count
        self.max_bomb = rules.bomb_max_count
        self.bomb_chance = rules.bomb_chance

    def reset_spin_parameters(self):
        """Restore per-spin overrides (feature buy forcing, enhanced odds) to the rule defaults."""
        self.buy_feature = False
        self.enhanced_bet = False
        self.min_scatter = self.rules.scatter_min_count
        self.max_scatter = self.rules.scatter_max_count
        self.scatter_chance = self.rules.scatter_chance
        self.min_bomb = self.rules.bomb_min_count
        self.max_bomb = self.rules.bomb_max_count
        self.bomb_chance = self.rules.bomb_chance

    def __repr__(self):
        return (f"<SpinContext bet={self.bet} bonus={self.is_bonus_round} "
                f"free_spins={self.free_spins} phase={self.phase.value}>")


class MatchResult:
    def __init__(self, kind: MatchKind, symbol_id=None, cells=None, win_amount=Decimal('0'),
                 tier=None, scatter_count=0):
        self.kind = kind
        self.symbol_id = symbol_id
        self.cells: List[Cell] = list(cells or [])
        self.win_amount: Decimal = win_amount
        self.tier = tier
        self.scatter_count = scatter_count

    @classmethod
    def no_match(cls, scatter_count=0):
        return cls(MatchKind.NONE, scatter_count=scatter_count)

    @property
    def is_cluster(self):
        return self.kind is MatchKind.CLUSTER

    @property
    def is_scatter_trigger(self):
        return self.kind is MatchKind.SCATTER_TRIGGER

    @property
    def count(self):
        return len(self.cells)

    def __repr__(self):
        if self.is_cluster:
            return f"<MatchResult cluster symbol={self.symbol_id} count={self.count} win={self.win_amount}>"
        return f"<MatchResult {self.kind.value} scatters={self.scatter_count}>"


class TumbleStep:
    def __init__(self, index, symbol_id, removed, added, grid, step_win, running_total):
        self.index = index
        self.symbol_id = symbol_id
        self.removed: List[Cell] = list(removed)
        self.added: List[Cell] = list(added)
        self.grid: List[List[int]] = grid
        self.step_win: Decimal = step_win
        self.running_total: Decimal = running_total

    def __repr__(self):
        return f"<TumbleStep #{self.index} symbol={self.symbol_id} removed={len(self.removed)} win={self.step_win}>"


class SpinOutcome:
    def __init__(self, spin_number, mode: SpinMode, bet, debited, was_free_spin, initial_grid):
        self.spin_number = spin_number
        self.mode = mode
        self.bet: Decimal = bet
        self.debited: Decimal = debited
        self.was_free_spin = was_free_spin
        self.initial_grid: List[List[int]] = initial_grid
        self.final_grid: List[List[int]] = initial_grid
        self.steps: List[TumbleStep] = []
        self.tumble_capped = False
        self.cluster_win = Decimal('0')
        self.scatter_award = Decimal('0')
        self.bomb_multiplier = 1
        self.total_win = Decimal('0')
        self.scatter_count = 0
        self.bonus_triggered = False
        self.free_spins_awarded = 0
        self.retriggered = False
        self.bonus_ended = False
        self.free_spins_remaining = 0
        self.win_overlay_tier: Optional[str] = None

    @property
    def win_multiple(self) -> Decimal:
        if not self.bet:
            return Decimal('0')
        return self.total_win / self.bet

    def __repr__(self):
        return (f"<SpinOutcome #{self.spin_number} mode={self.mode.value} "
                f"tumbles={len(self.steps)} total_win={self.total_win}>")


class AutoplaySession:
    def __init__(self, remaining, free_spins_only=False):
        self.remaining = remaining
        self.free_spins_only = free_spins_only
        self.active = True
        self.readiness = ReadinessState.READY
        self.spins_issued = 0
        self.stall_recoveries = 0
        self.consecutive_stall_recoveries = 0

    def __repr__(self):
        return (f"<AutoplaySession remaining={self.remaining} free_spins_only={self.free_spins_only} "
                f"readiness={self.readiness.value} issued={self.spins_issued}>")
