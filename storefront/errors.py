"""Domain errors raised by the order engine and repositories.

Each error knows the HTTP status it maps to, a machine-readable ``reason``
and any extra fields the caller needs to explain the failure to the user.
"""

class OrderError(Exception):
    status_code = 500
    reason = "order_error"

    def __init__(self, message: str, reason: str | None = None, **extra):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, "reason": self.reason, **self.extra}

class NotFoundError(OrderError):
    status_code = 404
    reason = "not_found"

class NotOwnedError(NotFoundError):
    # Rendered exactly like NotFoundError so existence is not leaked.
    reason = "not_found"

class ConflictError(OrderError):
    status_code = 409
    reason = "conflict"

class OrderValidationError(OrderError):
    status_code = 400
    reason = "validation_failed"

class TransitionDenied(OrderError):
    status_code = 400

    ALREADY_CANCELLED = "already_cancelled"
    ALREADY_COMPLETED = "already_completed"
    ALREADY_REVIEWED = "already_reviewed"
    WINDOW_EXPIRED = "window_expired"
    NOT_REVIEWED = "not_reviewed"
    NOT_ALLOWED = "transition_not_allowed"

    def __init__(self, reason: str, message: str, **extra):
        super().__init__(message, reason=reason, **extra)

class UpstreamUnavailable(OrderError):
    status_code = 503
    reason = "upstream_unavailable"
