class ErrorCodes:
    # Generic
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    GAME_LOGIC_ERROR = "GAME_LOGIC_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Spin lifecycle
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    REENTRANT_SPIN = "REENTRANT_SPIN"
    INVALID_GRID_STATE = "INVALID_GRID_STATE"
    FEATURE_UNAVAILABLE = "FEATURE_UNAVAILABLE"

    # Autoplay
    AUTOPLAY_REJECTED = "AUTOPLAY_REJECTED"
