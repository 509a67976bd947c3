"""Structured failures raised by the attempt engine.

Every error maps to one ``error_code`` and HTTP status; ``main.py`` renders
them through the ``ErrorResponse`` envelope.
"""

from typing import Any

SUBMITTED_MESSAGE = "This test has already been submitted."
GENERIC_FAILURE_MESSAGE = "Unable to continue. Please try again."


class EngineError(Exception):
    """Base class for all engine failures."""

    error_code = "engine_error"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details or None
        super().__init__(self.message)


class Unauthorized(EngineError):
    error_code = "unauthorized"
    status_code = 401
    default_message = "Invalid or expired token"


class Forbidden(EngineError):
    error_code = "forbidden"
    status_code = 403
    default_message = "Staff access required"


class NotFound(EngineError):
    error_code = "not_found"
    status_code = 404
    default_message = "Not found"


class TestNotAvailable(EngineError):
    __test__ = False

    error_code = "test_not_available"
    status_code = 403
    default_message = "This test is not open right now."


class AttemptAlreadyCompleted(EngineError):
    error_code = "attempt_already_completed"
    status_code = 409
    default_message = SUBMITTED_MESSAGE


class AttemptNotActive(EngineError):
    error_code = "attempt_not_active"
    status_code = 409
    default_message = SUBMITTED_MESSAGE


class InvalidAnswerTarget(EngineError):
    error_code = "invalid_answer_target"
    status_code = 422
    default_message = "Question is not part of this attempt."


class ConcurrentModification(EngineError):
    """Lost a creation/finalize race; reread the attempt, do not retry the write."""

    error_code = "concurrent_modification"
    status_code = 409
    default_message = "Attempt was modified concurrently. Reload and try again."


class ConfigurationError(EngineError):
    error_code = "configuration_error"
    status_code = 422
    default_message = "Test definition is misconfigured."
