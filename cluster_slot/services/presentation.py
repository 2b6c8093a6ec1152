"""
External collaborators consumed by the engine.

The engine never draws, plays sounds or stores money itself. It asks a
Presentation for animations and popups and awaits them, and it moves money
through an AccountService. Headless implementations are provided for the
simulator, the CLI and the tests.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from cluster_slot.exceptions import InsufficientBalanceException

logger = logging.getLogger(__name__)


class AccountService(ABC):
    @abstractmethod
    def get_balance(self) -> Decimal:
        ...

    @abstractmethod
    def debit(self, amount) -> Decimal:
        """Remove ``amount`` and return the new balance. Raises InsufficientBalanceException."""
        ...

    @abstractmethod
    def credit(self, amount) -> Decimal:
        ...


class Presentation(ABC):
    """Animation, overlay and scene requests. Every method is awaited to completion."""

    @abstractmethod
    async def play_reel_drop_animation(self, grid):
        ...

    @abstractmethod
    async def play_removal_animation(self, cells):
        ...

    @abstractmethod
    async def show_win_overlay(self, total_win, multiplier, tier):
        ...

    @abstractmethod
    async def show_bonus_trigger_popup(self, free_spins):
        ...

    @abstractmethod
    async def show_retrigger_popup(self, added):
        ...

    @abstractmethod
    async def show_bonus_summary(self, total):
        ...

    @abstractmethod
    def set_bonus_scene(self, enabled):
        ...

    @abstractmethod
    def show_notice(self, exception):
        ...


class InMemoryAccount(AccountService):
    def __init__(self, balance=Decimal('1000')):
        self.balance = Decimal(balance)

    def get_balance(self):
        return self.balance

    def debit(self, amount):
        amount = Decimal(amount)
        if amount > self.balance:
            raise InsufficientBalanceException(
                details={'balance': str(self.balance), 'required': str(amount)}
            )
        self.balance -= amount
        return self.balance

    def credit(self, amount):
        self.balance += Decimal(amount)
        return self.balance

    def __repr__(self):
        return f"<InMemoryAccount balance={self.balance}>"


class HeadlessPresentation(Presentation):
    """
    Records every request in ``calls`` and completes after ``delay`` seconds.

    A zero delay still yields to the event loop once so completion ordering
    matches a real renderer.
    """

    def __init__(self, delay=0.0):
        self.delay = delay
        self.calls = []
        self.bonus_scene = False
        self.notices = []

    async def _complete(self, name, *args):
        self.calls.append((name, args))
        await asyncio.sleep(self.delay)

    async def play_reel_drop_animation(self, grid):
        await self._complete('play_reel_drop_animation', grid)

    async def play_removal_animation(self, cells):
        await self._complete('play_removal_animation', cells)

    async def show_win_overlay(self, total_win, multiplier, tier):
        await self._complete('show_win_overlay', total_win, multiplier, tier)

    async def show_bonus_trigger_popup(self, free_spins):
        await self._complete('show_bonus_trigger_popup', free_spins)

    async def show_retrigger_popup(self, added):
        await self._complete('show_retrigger_popup', added)

    async def show_bonus_summary(self, total):
        await self._complete('show_bonus_summary', total)

    def set_bonus_scene(self, enabled):
        self.calls.append(('set_bonus_scene', (enabled,)))
        self.bonus_scene = enabled

    def show_notice(self, exception):
        self.calls.append(('show_notice', (exception,)))
        self.notices.append(exception)
        logger.info(f"Notice for player: {exception.status_message}")

    def call_names(self):
        return [name for name, _ in self.calls]
