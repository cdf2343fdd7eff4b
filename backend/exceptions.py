# exceptions.py — Domain error taxonomy, mapped to HTTP responses in main.py
from typing import Iterable, Optional


class DomainError(Exception):
    status_code = 400
    code = "domain_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ForbiddenError(DomainError):
    status_code = 403
    code = "forbidden"


class InvalidTransitionError(DomainError):
    """Requested status is not reachable from the current one."""
    status_code = 400
    code = "invalid_transition"

    def __init__(self, current, requested, allowed: Iterable):
        self.current = current
        self.requested = requested
        self.allowed = list(allowed)
        allowed_text = ", ".join(_label(s) for s in self.allowed) or "none"
        super().__init__(
            f"Invalid status transition: {_label(current)} -> {_label(requested)}. "
            f"Allowed: {allowed_text}"
        )


class InvalidOperationError(DomainError):
    status_code = 400
    code = "invalid_operation"


class ConflictError(DomainError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, current_status=None, allowed: Optional[Iterable] = None):
        super().__init__(message)
        self.current_status = current_status
        self.allowed = list(allowed or [])


def _label(value) -> str:
    return value.value if hasattr(value, "value") else str(value)
