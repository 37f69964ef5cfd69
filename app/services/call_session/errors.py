"""Domain errors for call sessions and billing."""
from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes surfaced to API callers."""

    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DUPLICATE_SESSION = "DUPLICATE_SESSION"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    NOT_A_CALLEE = "NOT_A_CALLEE"


class CallError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InsufficientBalanceError(CallError):
    """Raised when the payer is below the minimum start balance."""

    def __init__(self, payer_id: str, balance, required) -> None:
        super().__init__(
            code=ErrorCode.INSUFFICIENT_BALANCE,
            message=f"Insufficient balance to start a call (requires {required})",
        )
        self.payer_id = payer_id
        self.balance = balance
        self.required = required


class DuplicateSessionError(CallError):
    """Raised when a participant is already in an active call."""

    def __init__(self, user_id: str, session_id: str) -> None:
        super().__init__(
            code=ErrorCode.DUPLICATE_SESSION,
            message=f"User {user_id} is already in an active call",
        )
        self.user_id = user_id
        self.session_id = session_id


class SessionNotFoundError(CallError):
    """Raised when a session id is unknown or already removed."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            code=ErrorCode.SESSION_NOT_FOUND,
            message="Call session not found",
        )
        self.session_id = session_id


class ServiceUnavailableError(CallError):
    """Raised when the ledger cannot be reached during initiation."""

    def __init__(self, message: str = "Billing service unavailable, try again later") -> None:
        super().__init__(code=ErrorCode.SERVICE_UNAVAILABLE, message=message)


class InvalidTransitionError(CallError):
    """Raised when an operation is not valid in the session's current state."""

    def __init__(self, session_id: str, state, operation: str) -> None:
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot {operation} a call that is {state}",
        )
        self.session_id = session_id
        self.state = state
        self.operation = operation


class NotACalleeError(CallError):
    """Raised when someone other than an invited callee tries to accept."""

    def __init__(self, session_id: str, user_id: str) -> None:
        super().__init__(
            code=ErrorCode.NOT_A_CALLEE,
            message="Only an invited callee can accept this call",
        )
        self.session_id = session_id
        self.user_id = user_id
