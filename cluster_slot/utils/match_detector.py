import logging
from collections import Counter
from decimal import Decimal

from cluster_slot.models import Cell, MatchKind, MatchResult

logger = logging.getLogger(__name__)


def count_symbols(cells):
    """Count every symbol id on a grid snapshot (list of rows)."""
    counter = Counter()
    for row in cells:
        counter.update(row)
    return counter


def get_cluster_payout(rules, symbol_id, tier_index, bet):
    """
    Win amount for a cluster of ``symbol_id`` at ``tier_index``.

    Regular symbols pay ``payout_tiers[tier].payouts[symbol] * bet``; the scatter
    symbol pays the fixed ``scatter_cluster_payouts[tier] * bet`` instead.
    """
    if symbol_id == rules.scatter_symbol_id:
        multiple = rules.scatter_cluster_payouts[tier_index]
    else:
        multiple = rules.payout_tiers[tier_index].payouts.get(symbol_id, Decimal('0'))
    return Decimal(multiple) * Decimal(bet)


def find_winning_cluster(cells, rules, bet):
    """
    Scan a grid snapshot for a cluster of ``match_threshold`` or more identical symbols.

    Only one symbol is resolved per pass. When several qualify at once the
    lowest symbol id wins. Bomb ids never form clusters.

    Args:
        cells (list[list[int]]): Grid snapshot, ``cells[row][col]``.
        rules (GameRules): Loaded game rules.
        bet (Decimal): Current bet, used to size the win.

    Returns:
        MatchResult | None: A cluster result, or None when nothing qualifies.
    """
    counts = count_symbols(cells)
    for symbol_id in sorted(counts):
        if rules.is_bomb(symbol_id):
            continue
        tier_index = rules.tier_for_count(counts[symbol_id])
        if tier_index is None:
            continue
        matched = [Cell(r, c) for r, row in enumerate(cells) for c, value in enumerate(row)
                   if value == symbol_id]
        win_amount = get_cluster_payout(rules, symbol_id, tier_index, bet)
        logger.debug(f"Cluster of {len(matched)}x symbol {symbol_id} at tier {tier_index + 1}, win {win_amount}")
        return MatchResult(MatchKind.CLUSTER, symbol_id=symbol_id, cells=matched,
                           win_amount=win_amount, tier=tier_index + 1)
    return None


def check_scatter_trigger(cells, rules, is_bonus_round):
    """
    Report whether the scatters on a grid start (or extend) the bonus round.

    Base game needs ``trigger_count`` scatters (default 4); inside the bonus a
    retrigger needs ``retrigger_count`` (default 3).

    Returns:
        MatchResult: ``scatter_trigger`` when the threshold is met, otherwise ``none``.
            Both carry the scatter count.
    """
    scatter_count = count_symbols(cells).get(rules.scatter_symbol_id, 0)
    threshold = rules.retrigger_count if is_bonus_round else rules.trigger_count
    if scatter_count >= threshold:
        return MatchResult(MatchKind.SCATTER_TRIGGER, symbol_id=rules.scatter_symbol_id,
                           scatter_count=scatter_count)
    return MatchResult.no_match(scatter_count=scatter_count)


def detect_match(cells, rules, bet, is_bonus_round=False):
    """Cluster first, then the scatter check. Pure: the grid is never modified."""
    cluster = find_winning_cluster(cells, rules, bet)
    if cluster is not None:
        return cluster
    return check_scatter_trigger(cells, rules, is_bonus_round)


def _lookup_award(table, scatter_count):
    if not table:
        return 0
    eligible = [count for count in table if count <= scatter_count]
    if not eligible:
        return 0
    return table[max(eligible)]


def free_spins_for_trigger(rules, scatter_count):
    """Spins awarded on entering the bonus. Counts above the table use its highest entry."""
    if scatter_count < rules.trigger_count:
        return 0
    return _lookup_award(rules.free_spins_awarded, scatter_count)


def free_spins_for_retrigger(rules, scatter_count):
    if scatter_count < rules.retrigger_count:
        return 0
    return _lookup_award(rules.retrigger_spins_awarded, scatter_count)


def scatter_trigger_award(rules, scatter_count, bet):
    """Optional one-off bet multiple paid for the scatters that started the bonus."""
    multiple = _lookup_award(rules.scatter_trigger_payouts, scatter_count)
    return Decimal(multiple) * Decimal(bet)
