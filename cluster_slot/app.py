import logging
import random
import uuid
from decimal import Decimal

from cluster_slot.config import Config
from cluster_slot.exceptions import ValidationException
from cluster_slot.models import SpinContext, SpinMode
from cluster_slot.schemas import load_game_config
from cluster_slot.services.autoplay_scheduler import AutoplayScheduler
from cluster_slot.services.bonus_service import BonusTrigger, FreeSpinCounter
from cluster_slot.services.presentation import HeadlessPresentation, InMemoryAccount
from cluster_slot.services.spin_service import SpinOrchestrator
from cluster_slot.utils.cascade import CascadeResolver
from cluster_slot.utils.game_logger import bind_session_id, configure_logging
from cluster_slot.utils.grid import SymbolGrid
from cluster_slot.utils.win_tracker import WinAccumulator

logger = logging.getLogger(__name__)


class GameSession:
    """Every engine component for one player session, wired together."""

    def __init__(self, session_id, rules, config, context, grid, accumulator, resolver, bonus,
                 orchestrator, autoplay, account, presentation):
        self.session_id = session_id
        self.rules = rules
        self.config = config
        self.context = context
        self.grid = grid
        self.accumulator = accumulator
        self.resolver = resolver
        self.bonus = bonus
        self.orchestrator = orchestrator
        self.autoplay = autoplay
        self.account = account
        self.presentation = presentation
        self.closed = False

    async def spin(self, mode=SpinMode.NORMAL):
        return await self.orchestrator.spin(mode)

    def set_bet(self, bet):
        bet = Decimal(bet)
        if not self.rules.min_bet <= bet <= self.rules.max_bet:
            raise ValidationException(
                f"Bet must be between {self.rules.min_bet} and {self.rules.max_bet}",
                details={'bet': str(bet)}
            )
        if self.context.is_spinning or self.context.is_bonus_round:
            raise ValidationException("Bet cannot change during a spin or the bonus round",
                                      details={'bet': str(bet)})
        self.context.bet = bet

    def set_turbo(self, enabled):
        """Turbo mode halves the pause autoplay leaves between spins."""
        self.context.turbo = bool(enabled)
        logger.debug(f"Turbo mode {'on' if self.context.turbo else 'off'} for session {self.session_id}")

    def close(self):
        """Stop autoplay and drop every channel subscription owned by this session."""
        if self.closed:
            return
        self.autoplay.close()
        self.orchestrator.close()
        self.bonus.close()
        self.resolver.close()
        self.closed = True
        logger.info(f"Game session {self.session_id} closed")

    def __repr__(self):
        return f"<GameSession {self.session_id} {self.rules.short_name}>"


def create_game_session(config_class=Config, presentation=None, account=None, rng=None,
                        slot_short_name=None, rules=None, bet=None, free_spin_authority=None):
    """
    Game session factory.

    Args:
        config_class: Config or TestingConfig (or a subclass).
        presentation (Presentation | None): Defaults to a HeadlessPresentation.
        account (AccountService | None): Defaults to an InMemoryAccount.
        rng (random.Random | None): Seed it for reproducible grids.
        slot_short_name (str | None): Rules file to load; defaults to config_class.SLOT_SHORT_NAME.
        rules (GameRules | None): Already loaded rules, skips the file load.
        bet: Initial bet; defaults to the rules' default bet.
        free_spin_authority (callable | None): External free-spin count, the sole writer when set.

    Returns:
        GameSession
    """
    if not config_class.TESTING:
        configure_logging(config_class)

    session_id = uuid.uuid4().hex[:12]
    bind_session_id(session_id)

    if rules is None:
        rules = load_game_config(slot_short_name or config_class.SLOT_SHORT_NAME)

    presentation = presentation or HeadlessPresentation()
    account = account or InMemoryAccount()
    rng = rng or random.Random()

    context = SpinContext(rules, bet)
    grid = SymbolGrid(rules, rng)
    accumulator = WinAccumulator()
    max_tumbles = min(rules.max_tumbles, config_class.MAX_TUMBLES)
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

    logger.info(f"Game session {session_id} created for '{rules.short_name}' ({rules.rows}x{rules.columns})")
    return GameSession(session_id, rules, config_class, context, grid, accumulator, resolver, bonus,
                       orchestrator, autoplay, account, presentation)
