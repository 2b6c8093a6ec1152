from decimal import Decimal


class WinAccumulator:
    """
    Running win bookkeeping for the current spin and the current bonus round.

    ``total_win`` covers one spin (all tumbles plus any scatter award).
    ``total_bonus_win`` covers every spin since the bonus round was entered.
    """

    def __init__(self):
        self.total_win = Decimal('0')
        self.cluster_win = Decimal('0')
        self.total_bonus_win = Decimal('0')
        self._in_bonus = False

    def begin_spin(self, in_bonus):
        self.total_win = Decimal('0')
        self.cluster_win = Decimal('0')
        self._in_bonus = in_bonus

    def add_cluster_win(self, amount):
        amount = Decimal(amount)
        self.cluster_win += amount
        self._add(amount)
        return self.total_win

    def add_award(self, amount):
        """Non-cluster credit, e.g. the scatter award paid once on bonus entry."""
        self._add(Decimal(amount))
        return self.total_win

    def _add(self, amount):
        self.total_win += amount
        if self._in_bonus:
            self.total_bonus_win += amount

    def apply_cluster_multiplier(self, multiplier):
        """
        Multiply this spin's cluster win in place.

        Returns:
            Decimal: The extra amount the multiplier added.
        """
        if multiplier == 1 or not self.cluster_win:
            return Decimal('0')
        extra = self.cluster_win * (Decimal(multiplier) - 1)
        self.cluster_win += extra
        self._add(extra)
        return extra

    def reset_bonus(self):
        self.total_bonus_win = Decimal('0')

    def __repr__(self):
        return f"<WinAccumulator total_win={self.total_win} total_bonus_win={self.total_bonus_win}>"
