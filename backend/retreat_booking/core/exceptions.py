"""
Error taxonomy for the booking core.

Every error is an HTTPException so services can raise it directly and the
API layer surfaces it without translation. `error_code` gives clients a
stable machine-readable discriminator next to the human `detail`.
"""

from typing import Optional

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Booking operation failed"

    def __init__(self, detail: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
        )
        self.error_code = error_code or self.__class__.__name__

    def __str__(self) -> str:
        return str(self.detail)


class InvalidArgument(BookingError):
    """Caller-fixable input problem: malformed identifier, seat count out of range."""

    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid argument"


class NotFound(BookingError):
    status_code_default = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class Conflict(BookingError):
    """Insufficient seats or a competing write won the race."""

    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Conflict"


class InvalidState(Conflict):
    """Requested transition is not allowed from the booking's current state."""

    default_detail = "Invalid booking state"


class UpstreamFailure(BookingError):
    """Payment gateway call failed: timeout, API error, network."""

    status_code_default = status.HTTP_502_BAD_GATEWAY
    default_detail = "Payment gateway request failed"


class InvalidSignature(UpstreamFailure):
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid webhook signature"


class InternalFailure(BookingError):
    default_detail = "Internal error"
