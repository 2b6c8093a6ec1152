"""
Runtime configuration with fail-fast validation.

Values come from the environment (optionally a .env file) and are validated
once when this module is imported. Game rules (payouts, grid size, scatter
odds) live in the per-slot gameConfig.json, not here.
"""
from dotenv import load_dotenv

from cluster_slot.config_validator import validate_runtime_config

# Load environment variables from .env file
load_dotenv()


class Config:
    """Engine settings resolved from the environment."""

    _validated_config = validate_runtime_config()

    # Logging
    LOG_LEVEL = _validated_config['LOG_LEVEL']
    LOG_JSON = _validated_config['LOG_JSON']

    # Game rules file to load (public/slots/<name>/gameConfig.json)
    SLOT_SHORT_NAME = _validated_config['SLOT_SHORT_NAME']

    # Tumble loop safety ceiling
    MAX_TUMBLES = _validated_config['MAX_TUMBLES']

    # Autoplay timing, in seconds
    AUTOPLAY_FIRST_SPIN_DELAY = _validated_config['AUTOPLAY_FIRST_SPIN_DELAY']
    AUTOPLAY_NEXT_SPIN_DELAY = _validated_config['AUTOPLAY_NEXT_SPIN_DELAY']
    AUTOPLAY_STALL_TIMEOUT = _validated_config['AUTOPLAY_STALL_TIMEOUT']

    # Start a free-spins autoplay automatically when the bonus round is entered
    AUTO_PLAY_FREE_SPINS = _validated_config['AUTO_PLAY_FREE_SPINS']

    TESTING = False


class TestingConfig(Config):
    TESTING = True
    LOG_JSON = False
    LOG_LEVEL = 'DEBUG'
    # Keep autoplay fast so scheduler tests finish quickly
    AUTOPLAY_FIRST_SPIN_DELAY = 0.0
    AUTOPLAY_NEXT_SPIN_DELAY = 0.005
    AUTOPLAY_STALL_TIMEOUT = 0.05
