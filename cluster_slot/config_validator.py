"""
Runtime configuration validation.

Environment variables that tune the engine (logging, autoplay timing, the
tumble ceiling) are validated once at import time. Every problem found is
collected and reported together so a misconfigured environment fails fast
with a complete list instead of one error at a time.
"""

import os
import sys
import warnings
from typing import List, Optional


VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ConfigValidationError(Exception):
    """Raised when runtime configuration is missing or invalid."""
    pass


class ConfigValidator:
    """Validates the engine's environment-driven settings."""

    def __init__(self, environ=None):
        """
        Initialize the configuration validator.

        Args:
            environ: Mapping to read settings from. Defaults to os.environ.
        """
        self.environ = environ if environ is not None else os.environ
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def _get(self, var_name: str, default: Optional[str] = None) -> Optional[str]:
        value = self.environ.get(var_name)
        if value is None or not str(value).strip():
            return default
        return str(value).strip()

    def validate_bool(self, var_name: str, default: bool) -> bool:
        raw = self._get(var_name)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered in ('true', '1', 't', 'yes'):
            return True
        if lowered in ('false', '0', 'f', 'no'):
            return False
        self.errors.append(f"{var_name} must be a boolean (true/false), got '{raw}'")
        return default

    def validate_int(self, var_name: str, default: int, minimum: int = 0) -> int:
        """
        Validate an integer environment variable with a lower bound.

        Args:
            var_name: Name of the environment variable
            default: Value used when the variable is unset
            minimum: Smallest accepted value

        Returns:
            The parsed value, or the default when unset or invalid
        """
        raw = self._get(var_name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            self.errors.append(f"{var_name} must be an integer, got '{raw}'")
            return default
        if value < minimum:
            self.errors.append(f"{var_name} must be >= {minimum}, got {value}")
            return default
        return value

    def validate_logging_config(self):
        """Validate logging level and output format."""
        level = (self._get('LOG_LEVEL', 'INFO') or 'INFO').upper()
        if level not in VALID_LOG_LEVELS:
            self.errors.append(f"LOG_LEVEL must be one of {', '.join(VALID_LOG_LEVELS)}, got '{level}'")
            level = 'INFO'
        use_json = self.validate_bool('LOG_JSON', True)
        return level, use_json

    def validate_autoplay_config(self):
        """Validate autoplay timing (milliseconds in the environment, seconds out)."""
        first_delay_ms = self.validate_int('AUTOPLAY_FIRST_SPIN_DELAY_MS', 50)
        next_delay_ms = self.validate_int('AUTOPLAY_NEXT_SPIN_DELAY_MS', 100)
        stall_timeout_ms = self.validate_int('AUTOPLAY_STALL_TIMEOUT_MS', 500, minimum=1)

        if stall_timeout_ms < next_delay_ms:
            self.warnings.append(
                "AUTOPLAY_STALL_TIMEOUT_MS is shorter than AUTOPLAY_NEXT_SPIN_DELAY_MS; "
                "stall recovery may fire before normal scheduling"
            )
        return first_delay_ms / 1000.0, next_delay_ms / 1000.0, stall_timeout_ms / 1000.0

    def validate_game_config(self):
        """Validate the selected slot and the tumble ceiling."""
        slot_short_name = self._get('SLOT_SHORT_NAME', 'sugar_wonderland')
        if not slot_short_name.replace('_', '').isalnum():
            self.errors.append(f"SLOT_SHORT_NAME may only contain letters, digits and underscores, got '{slot_short_name}'")
        max_tumbles = self.validate_int('MAX_TUMBLES', 50, minimum=1)
        return slot_short_name, max_tumbles

    def validate_all(self) -> dict:
        """
        Validate all configuration settings.

        Returns:
            Dictionary containing validated configuration values

        Raises:
            ConfigValidationError: If any setting is invalid
        """
        config = {}

        config['LOG_LEVEL'], config['LOG_JSON'] = self.validate_logging_config()
        (config['AUTOPLAY_FIRST_SPIN_DELAY'],
         config['AUTOPLAY_NEXT_SPIN_DELAY'],
         config['AUTOPLAY_STALL_TIMEOUT']) = self.validate_autoplay_config()
        config['SLOT_SHORT_NAME'], config['MAX_TUMBLES'] = self.validate_game_config()
        config['AUTO_PLAY_FREE_SPINS'] = self.validate_bool('AUTO_PLAY_FREE_SPINS', True)

        if self.errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in self.errors)
            if self.warnings:
                error_msg += "\n\nWarnings:\n" + "\n".join(f"  - {warning}" for warning in self.warnings)
            raise ConfigValidationError(error_msg)

        for warning in self.warnings:
            warnings.warn(warning, UserWarning)

        return config


def validate_runtime_config(environ=None) -> dict:
    """
    Validate runtime configuration with fail-fast behavior.

    Returns:
        Dictionary of validated configuration values

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        return ConfigValidator(environ).validate_all()
    except ConfigValidationError as e:
        print("\nCONFIGURATION VALIDATION FAILED\n", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print("\nFix the environment variables above (or your .env file) and retry.\n", file=sys.stderr)
        raise
