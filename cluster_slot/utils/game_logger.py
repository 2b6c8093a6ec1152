"""
Game Event Logging
Structured audit records for spins, bonus transitions and autoplay, plus the
process-wide logging setup.
"""

import contextvars
import json
import logging
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger

LOG_FORMAT = '%(asctime)s %(levelname)s %(session_id)s %(module)s %(funcName)s %(lineno)d %(message)s'

_current_session_id = contextvars.ContextVar('session_id', default='N/A')

event_logger = logging.getLogger('cluster_slot.game_events')


def bind_session_id(session_id):
    """Stamp log records emitted from the current context with ``session_id``."""
    return _current_session_id.set(session_id)


def current_session_id():
    return _current_session_id.get()


class SessionIdFilter(logging.Filter):
    def filter(self, record):
        record.session_id = _current_session_id.get()
        return True


def configure_logging(config):
    """
    Install a single stream handler on the ``cluster_slot`` logger.

    JSON output via python-json-logger when ``config.LOG_JSON`` is set, a
    plain text formatter otherwise.
    """
    logger = logging.getLogger('cluster_slot')
    handler = logging.StreamHandler()
    if config.LOG_JSON:
        formatter = jsonlogger.JsonFormatter(LOG_FORMAT)
    else:
        formatter = logging.Formatter(
            '%(asctime)s %(levelname)s [%(session_id)s] %(name)s: %(message)s'
        )
    handler.setFormatter(formatter)
    handler.addFilter(SessionIdFilter())
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))
    logger.propagate = False
    return logger


class GameEventLogger:
    """Centralized game event logging"""

    @staticmethod
    def log_game_event(event_type: str, sub_type: str, details: dict = None, level=logging.INFO):
        event_data = {
            'event_type': event_type,
            'sub_type': sub_type,
            'session_id': current_session_id(),
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'details': details or {}
        }
        event_logger.log(level, f"GAME_EVENT: {json.dumps(event_data, default=str)}")
        return event_data

    @staticmethod
    def log_spin_settled(outcome):
        """Log the settlement of one spin"""
        return GameEventLogger.log_game_event('spin', 'settled', {
            'spin_number': outcome.spin_number,
            'mode': outcome.mode.value,
            'bet': outcome.bet,
            'debited': outcome.debited,
            'free_spin': outcome.was_free_spin,
            'tumbles': len(outcome.steps),
            'tumble_capped': outcome.tumble_capped,
            'bomb_multiplier': outcome.bomb_multiplier,
            'total_win': outcome.total_win,
            'scatter_count': outcome.scatter_count,
        })

    @staticmethod
    def log_bonus_event(sub_type: str, free_spins: int = None, total_bonus_win=None, details: dict = None):
        """Log bonus round entry, retrigger and exit"""
        payload = {'free_spins': free_spins, 'total_bonus_win': total_bonus_win}
        payload.update(details or {})
        return GameEventLogger.log_game_event('bonus', sub_type, payload)

    @staticmethod
    def log_autoplay_event(sub_type: str, remaining: int = None, details: dict = None, warning: bool = False):
        """Log autoplay lifecycle and stall recovery"""
        payload = {'remaining': remaining}
        payload.update(details or {})
        level = logging.WARNING if warning else logging.INFO
        return GameEventLogger.log_game_event('autoplay', sub_type, payload, level=level)
