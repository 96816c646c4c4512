"""
Selector Brain Errors

Exception taxonomy and the error kinds carried on execution results.
Probe-level failures are converted into outcomes; only exhaustion reaches
the caller, as a failed ExecutionResult.
"""

from enum import Enum


class ErrorKind(Enum):
    """Classification of a failed resolution attempt"""
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    EXECUTION_ERROR = "execution_error"
    UNEXPECTED_ERROR = "unexpected_error"


class SelectorBrainError(Exception):
    """Base class for all selector brain errors"""

    error_kind = ErrorKind.UNEXPECTED_ERROR


class InvalidExperience(SelectorBrainError, ValueError):
    """A malformed experience was rejected by the store"""


class ElementNotFound(SelectorBrainError):
    error_kind = ErrorKind.NOT_FOUND


class ProbeTimeout(SelectorBrainError):
    error_kind = ErrorKind.TIMEOUT


class DriverExecutionError(SelectorBrainError):
    """The driver failed while evaluating or inspecting an element"""
    error_kind = ErrorKind.EXECUTION_ERROR


class RecoveryExhausted(SelectorBrainError):
    """Every plan step and recovery strategy failed"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class PersistenceDegraded(SelectorBrainError):
    """The persistence backend failed; the brain continues in memory"""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause
