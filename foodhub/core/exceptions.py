"""
Error Taxonomy

Every business failure raised by the order, payment and notification
services derives from FoodHubError. The API layer turns them into the
standard ErrorResponse body using the status_code and error_code carried
by each class, so services never import FastAPI.

    ValidationError         400  malformed input, no state change
    NotFoundError           404  referenced entity absent
    ConflictError           409  invariant violation (second active session)
    InvalidTransitionError  409  state machine row missing or guard failed
    ConsistencyError        409  gateway contradicts a recorded fact
    UpstreamError           502  gateway / push provider unreachable
"""

from typing import Optional


class FoodHubError(Exception):
    """Base class for all expected service errors."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.error_code,
            "detail": self.message if self.detail is None else f"{self.message}: {self.detail}",
        }


class ValidationError(FoodHubError):
    status_code = 400
    error_code = "validation_error"


class NotFoundError(FoodHubError):
    status_code = 404
    error_code = "not_found"


class ConflictError(FoodHubError):
    status_code = 409
    error_code = "conflict"


class InvalidTransitionError(FoodHubError):
    """A transition was requested that the order state machine forbids."""

    status_code = 409
    error_code = "invalid_transition"

    def __init__(self, message: str, *, current_status: Optional[str] = None, action: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status
        self.action = action


class ConsistencyError(FoodHubError):
    """
    The payment gateway reported something that contradicts what is
    already recorded locally. Never auto-resolved; an incident row is
    written for manual review before this is raised.
    """

    status_code = 409
    error_code = "consistency_error"

    def __init__(self, message: str, *, session_id: Optional[str] = None, incident_id=None):
        super().__init__(message)
        self.session_id = session_id
        self.incident_id = incident_id


class UpstreamError(FoodHubError):
    status_code = 502
    error_code = "upstream_error"
