"""Exception hierarchy for the red packet service.

Every error carries the HTTP status and the short machine-readable code the
API returns, so blueprints can simply let them propagate to the error
handlers registered by the application factory.
"""

from typing import Optional


class RedPacketError(Exception):
    """Base exception for domain errors."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "message": self.message}


class ValidationError(RedPacketError):
    """Missing or malformed input."""

    status_code = 400
    error = "validation_error"


class InsufficientFundsError(ValidationError):
    """A debit would take a balance below zero."""

    error = "insufficient_funds"


class AuthenticationError(RedPacketError):
    """Wrong password or missing/invalid session token."""

    status_code = 401
    error = "authentication_failed"


class AuthorizationError(RedPacketError):
    """A valid session token acting on somebody else's account."""

    status_code = 403
    error = "forbidden"


class NotFoundError(RedPacketError):
    status_code = 404
    error = "not_found"


class ClaimRejectedError(RedPacketError):
    """Base class for claim attempts refused before any money moves."""

    status_code = 400
    error = "claim_rejected"


class EnvelopeFullyClaimedError(ClaimRejectedError):
    error = "fully_claimed"


class EnvelopeExpiredError(ClaimRejectedError):
    error = "expired"


class SelfClaimError(ClaimRejectedError):
    error = "self_claim"


class AlreadyClaimedError(ClaimRejectedError):
    error = "already_claimed"


class WrongPassphraseError(ClaimRejectedError):
    error = "wrong_passphrase"


class ClaimConflictError(RedPacketError):
    """The envelope changed underneath a claim; the caller may retry."""

    status_code = 409
    error = "claim_conflict"
