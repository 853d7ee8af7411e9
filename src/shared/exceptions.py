"""
Exception hierarchy for the mastery engine.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""
    pass


class SessionError(EngineError):
    """Raised when a session operation is not allowed."""
    pass


class SessionClosedError(SessionError):
    """Raised when an answer is submitted to a COMPLETE or abandoned session."""
    pass


class QuestionMismatchError(SessionError):
    """Raised when a response does not belong to the question being shown."""
    pass


class PersistenceError(EngineError):
    """Raised when loading or saving learner state fails."""
    pass


class PersistenceTimeoutError(PersistenceError):
    """Raised when a persistence call does not resolve in time."""
    pass


class CircuitBreakerOpenError(EngineError):
    """Raised when circuit breaker is open and operation is blocked."""
    pass


class TelemetryError(EngineError):
    """Raised when telemetry cannot be appended or read."""
    pass
