from cluster_slot.error_codes import ErrorCodes

class AppException(Exception):
    def __init__(self, error_code, status_message, details=None, action_button=None, player_visible=True):
        super().__init__(status_message)
        self.error_code = error_code
        self.status_message = status_message
        self.details = details if details is not None else {}
        self.action_button = action_button if action_button is not None else {}
        self.player_visible = player_visible

    def to_dict(self):
        return {
            'error_code': self.error_code,
            'status_message': self.status_message,
            'details': self.details,
            'action_button': self.action_button,
        }

class ValidationException(AppException):
    def __init__(self, status_message="Validation failed", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.VALIDATION_ERROR,
            status_message=status_message,
            details=details,
            action_button=action_button,
            player_visible=False
        )

class InsufficientBalanceException(AppException):
    def __init__(self, status_message="Insufficient balance", details=None, action_button=None):
        super().__init__(
            error_code=ErrorCodes.INSUFFICIENT_BALANCE,
            status_message=status_message,
            details=details,
            action_button=action_button if action_button is not None else {"text": "OK", "actionType": "DISMISS"}
        )

class ReentrantSpinAttempt(AppException):
    def __init__(self, status_message="Spin already in progress", details=None):
        super().__init__(
            error_code=ErrorCodes.REENTRANT_SPIN,
            status_message=status_message,
            details=details,
            player_visible=False
        )

class InvalidGridStateException(AppException):
    def __init__(self, status_message="Grid data missing or malformed", details=None):
        super().__init__(
            error_code=ErrorCodes.INVALID_GRID_STATE,
            status_message=status_message,
            details=details,
            player_visible=False
        )

class GameLogicException(AppException):
    def __init__(self, status_message="Game logic error", details=None, action_button=None,
                 error_code=ErrorCodes.GAME_LOGIC_ERROR):
        super().__init__(
            error_code=error_code,
            status_message=status_message,
            details=details,
            action_button=action_button
        )

class AutoplayRejectedException(AppException):
    def __init__(self, status_message="Autoplay cannot start now", details=None):
        super().__init__(
            error_code=ErrorCodes.AUTOPLAY_REJECTED,
            status_message=status_message,
            details=details,
            player_visible=False
        )
