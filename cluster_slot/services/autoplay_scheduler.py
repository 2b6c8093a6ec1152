"""
Autoplay Scheduler
Issues unattended spins, each one gated on the engine being ready again.
"""

import asyncio
import logging

from cluster_slot.exceptions import AutoplayRejectedException, InsufficientBalanceException
from cluster_slot.models import AutoplaySession, ReadinessState, SpinMode
from cluster_slot.services.channels import Channel
from cluster_slot.utils.game_logger import GameEventLogger

logger = logging.getLogger(__name__)

# Stall recoveries beyond this many in a row are logged at WARNING
QUIET_STALL_RECOVERIES = 1

# Delays between autoplay spins are scaled by this in turbo mode
TURBO_DELAY_MULTIPLIER = 0.5


class AutoplayScheduler:
    """
    Readiness state machine driven by orchestrator signals.

    spin_started          -> WAITING_ANIMATION
    spin_settled          -> WAITING_OVERLAY while the win overlay is up, else READY
    win_overlay_closed    -> READY
    spin_aborted          -> session stops

    There is exactly one scheduled task at a time. It is either the delayed
    next spin or the stall check, so the event path and the timeout path can
    never both issue a spin. An issued spin runs as its own task and is not
    affected by stop().

    Channels:
        autoplay_started(remaining), autoplay_completed(reason)
    """

    def __init__(self, orchestrator, bonus, account, presentation, first_spin_delay=0.05,
                 next_spin_delay=0.1, stall_timeout=0.5, auto_play_free_spins=True):
        self.orchestrator = orchestrator
        self.bonus = bonus
        self.account = account
        self.presentation = presentation
        self.first_spin_delay = first_spin_delay
        self.next_spin_delay = next_spin_delay
        self.stall_timeout = stall_timeout
        self.auto_play_free_spins = auto_play_free_spins

        self.session = None
        self.last_session = None
        self.mode = SpinMode.NORMAL
        self._task = None
        self._task_kind = None
        self._inflight = set()
        self._pending_free_spins = 0
        self._completed = None

        self.autoplay_started = Channel('autoplay_started')
        self.autoplay_completed = Channel('autoplay_completed')

        self._unsubscribers = [
            orchestrator.spin_started.subscribe(self._on_spin_started),
            orchestrator.spin_settled.subscribe(self._on_spin_settled),
            orchestrator.win_overlay_closed.subscribe(self._on_win_overlay_closed),
            orchestrator.spin_aborted.subscribe(self._on_spin_aborted),
            bonus.bonus_entered.subscribe(self._on_bonus_entered),
            bonus.free_spins_added.subscribe(self._on_free_spins_added),
        ]

    @property
    def is_active(self):
        return self.session is not None and self.session.active

    @property
    def has_pending_task(self):
        return self._task is not None and not self._task.done()

    def start(self, remaining, free_spins_only=False, mode=SpinMode.NORMAL):
        """
        Start an autoplay session of ``remaining`` spins.

        Raises:
            AutoplayRejectedException: A spin is in progress, a session is already
                active, or the request itself is invalid.

        Returns:
            bool: True when the session started, False when the balance cannot
                cover the first spin (a notice is shown to the player).
        """
        if self.orchestrator.is_spinning:
            raise AutoplayRejectedException(details={'reason': 'spin_in_progress'})
        if self.is_active:
            raise AutoplayRejectedException(details={'reason': 'session_active'})
        if remaining <= 0:
            raise AutoplayRejectedException(details={'reason': 'no_spins_requested', 'remaining': remaining})
        if mode is SpinMode.BUY_FEATURE:
            raise AutoplayRejectedException(details={'reason': 'feature_buy_not_autoplayable'})

        if not free_spins_only and not self.orchestrator.can_afford(mode):
            self._notify_insufficient_balance(mode)
            return False

        self.mode = mode
        self.session = AutoplaySession(remaining, free_spins_only=free_spins_only)
        self._completed = asyncio.Event()
        logger.info(f"Autoplay started: {remaining} spins (free_spins_only={free_spins_only})")
        GameEventLogger.log_autoplay_event('started', remaining=remaining,
                                           details={'free_spins_only': free_spins_only, 'mode': mode.value})
        self.autoplay_started.emit(remaining)

        if self.orchestrator.win_overlay_active:
            self.session.readiness = ReadinessState.WAITING_OVERLAY
            self._arm_stall_check()
        else:
            self._schedule_spin(self.first_spin_delay)
        return True

    def stop(self, reason='stopped'):
        """
        End the session. A spin already issued still runs to settlement.
        """
        if self.session is None:
            return
        self._cancel_task()
        session = self.session
        session.active = False
        self.session = None
        self.last_session = session
        logger.info(f"Autoplay completed ({reason}) after {session.spins_issued} spins")
        GameEventLogger.log_autoplay_event('completed', remaining=session.remaining,
                                           details={'reason': reason, 'spins_issued': session.spins_issued})
        self.autoplay_completed.emit(reason)
        if self._completed is not None:
            self._completed.set()

    def add_spins(self, n):
        """Extend the running session without restarting it or touching readiness."""
        if not self.is_active or n <= 0:
            return
        self.session.remaining += n
        logger.debug(f"Autoplay extended by {n} spins ({self.session.remaining} remaining)")

    async def wait_idle(self):
        """Wait for every issued spin task to finish (used by the CLI, simulator and tests)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def wait_completed(self, timeout=None):
        """
        Wait until the current session stops and its last spin has settled.

        A free-spins session started by a bonus trigger during the wait is
        waited for as well.
        """
        while self._completed is not None:
            completed = self._completed
            await asyncio.wait_for(completed.wait(), timeout)
            await self.wait_idle()
            if self._completed is completed:
                break

    def close(self):
        self._cancel_task()
        self.session = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.autoplay_started.clear()
        self.autoplay_completed.clear()

    # Task slot

    def _cancel_task(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._task_kind = None

    def _schedule_spin(self, delay):
        if self._task_kind == 'spin' and self.has_pending_task:
            return
        self._cancel_task()
        self._task_kind = 'spin'
        self._task = asyncio.ensure_future(self._delayed_spin(self._spin_delay(delay)))

    def _spin_delay(self, delay):
        if self.orchestrator.context.turbo:
            return delay * TURBO_DELAY_MULTIPLIER
        return delay

    def _arm_stall_check(self):
        if self.has_pending_task:
            return
        self._task_kind = 'stall'
        self._task = asyncio.ensure_future(self._stall_check(self.stall_timeout))

    async def _delayed_spin(self, delay):
        await asyncio.sleep(delay)
        self._task = None
        self._task_kind = None
        session = self.session
        if session is None or not session.active or session.readiness is not ReadinessState.READY:
            return

        if not self.orchestrator.next_spin_is_free() and not self.orchestrator.can_afford(self.mode):
            self._notify_insufficient_balance(self.mode)
            self.stop('insufficient_balance')
            return

        session.spins_issued += 1
        session.readiness = ReadinessState.WAITING_ANIMATION
        logger.debug(f"Autoplay issuing spin {session.spins_issued} ({session.remaining} remaining)")
        spin_task = asyncio.ensure_future(self.orchestrator.spin(self.mode))
        self._inflight.add(spin_task)
        spin_task.add_done_callback(self._inflight.discard)
        self._arm_stall_check()

    async def _stall_check(self, timeout):
        await asyncio.sleep(timeout)
        self._task = None
        self._task_kind = None
        session = self.session
        if session is None or not session.active:
            return

        if not self.orchestrator.is_idle:
            self._arm_stall_check()
            return

        # The engine is idle but no completion signal moved us to READY
        session.stall_recoveries += 1
        session.consecutive_stall_recoveries += 1
        repeated = session.consecutive_stall_recoveries > QUIET_STALL_RECOVERIES
        if repeated:
            logger.warning(f"Autoplay stall recovery fired {session.consecutive_stall_recoveries} times in a row")
        else:
            logger.info(f"Autoplay stall recovery: engine idle while {session.readiness.value}")
        GameEventLogger.log_autoplay_event('stall_recovery', remaining=session.remaining,
                                           details={'readiness': session.readiness.value,
                                                    'consecutive': session.consecutive_stall_recoveries},
                                           warning=repeated)
        session.readiness = ReadinessState.READY
        self._schedule_spin(self.next_spin_delay)

    # Signal handlers

    def _on_spin_started(self, grid):
        if self.is_active:
            self.session.readiness = ReadinessState.WAITING_ANIMATION

    def _on_spin_settled(self, outcome):
        if self._pending_free_spins and not self.is_active:
            pending = self._pending_free_spins
            self._pending_free_spins = 0
            if self.bonus.in_bonus:
                self.start(pending, free_spins_only=True)
            return

        if not self.is_active:
            return
        session = self.session
        session.consecutive_stall_recoveries = 0

        if session.free_spins_only or not outcome.was_free_spin:
            session.remaining -= 1

        if session.free_spins_only:
            if outcome.bonus_ended or (not self.bonus.in_bonus) or session.remaining <= 0:
                self.stop('bonus_complete')
                return
        elif session.remaining <= 0 and not self.bonus.in_bonus:
            self.stop('completed')
            return

        if not self.orchestrator.next_spin_is_free() and not self.orchestrator.can_afford(self.mode):
            self._notify_insufficient_balance(self.mode)
            self.stop('insufficient_balance')
            return

        if self.orchestrator.win_overlay_active:
            session.readiness = ReadinessState.WAITING_OVERLAY
            self._arm_stall_check()
        else:
            self._become_ready()

    def _on_win_overlay_closed(self):
        if self.is_active and self.session.readiness is ReadinessState.WAITING_OVERLAY:
            self._become_ready()

    def _on_spin_aborted(self, exc):
        if self.is_active:
            self.stop('aborted')

    def _on_bonus_entered(self, free_spins):
        if self.is_active:
            # A base-game session keeps running; free spins do not consume it
            return
        if self.auto_play_free_spins and free_spins > 0:
            self._pending_free_spins = free_spins

    def _on_free_spins_added(self, n):
        if self.is_active and self.session.free_spins_only:
            self.add_spins(n)

    def _become_ready(self):
        self.session.readiness = ReadinessState.READY
        self._schedule_spin(self.next_spin_delay)

    def _notify_insufficient_balance(self, mode):
        exc = InsufficientBalanceException(details={
            'balance': str(self.account.get_balance()),
            'required': str(self.orchestrator.spin_price(mode)),
        })
        logger.info(f"Autoplay halted: {exc.status_message}")
        self.presentation.show_notice(exc)
