from typing import Tuple

from app.services.backend_client import BackendError, NotAuthenticatedError

UNKNOWN_ERROR = "Error desconocido"

AUTH = "auth"
NETWORK = "network"
REMOTE = "remote"
VALIDATION = "validation"
UNEXPECTED = "unexpected"


def describe(exc: Exception) -> Tuple[str, str]:
    """Map an exception to ``(kind, message)`` for component error state."""
    message = str(exc) or UNKNOWN_ERROR
    if isinstance(exc, NotAuthenticatedError) or getattr(exc, "status_code", None) == 401:
        return AUTH, message
    if isinstance(exc, BackendError):
        return (REMOTE if exc.status_code else NETWORK), message
    return UNEXPECTED, message
