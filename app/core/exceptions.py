"""Domain errors raised by the booking engine.

Each error carries a machine-readable ``code`` and a human ``message``; the API
layer turns them into ``{"detail": message, "code": code}`` with the class's
``status_code``. Anything that is not a ``ParkingError`` (storage failures,
bugs) is left to propagate as a 500.
"""


class ParkingError(Exception):
    status_code = 500
    default_code = "error"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(ParkingError):
    status_code = 400
    default_code = "validation_error"


class NotFoundError(ParkingError):
    status_code = 404
    default_code = "not_found"


class ConflictError(ParkingError):
    status_code = 409
    default_code = "conflict"


class ForbiddenError(ParkingError):
    status_code = 403
    default_code = "forbidden"


class ExpiredError(ParkingError):
    """Gate scan past the booking window. The booking has been moved to expired."""
    status_code = 403
    default_code = "expired"
