from fastapi import status


class FrontDeskError(Exception):
    """
    Base class for errors raised by front desk and reclamation operations.

    Each subclass carries the HTTP status code the API layer responds with.
    """
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidStateError(FrontDeskError):
    """The booking or room is not in a state that permits the transition."""
    status_code = status.HTTP_409_CONFLICT


class ConflictError(FrontDeskError):
    """Two checked-in bookings would share one room."""
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(FrontDeskError):
    status_code = status.HTTP_404_NOT_FOUND


class TransientStoreError(FrontDeskError):
    """The database kept failing (contention, connectivity) after retries."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InvalidRequestError(FrontDeskError):
    status_code = status.HTTP_400_BAD_REQUEST
