# Domain Errors for the Collaboration Flow
# Raised inside services; the engine converts them into result values


class ErrorKind:
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    INVALID_STATE = "InvalidState"
    INVALID_INPUT = "InvalidInput"
    PRECONDITION_FAILED = "PreconditionFailed"
    EXTERNAL_UNAVAILABLE = "ExternalUnavailable"
    SIGNATURE_INVALID = "SignatureInvalid"
    RATE_LIMITED = "RateLimited"


class CollaborationError(Exception):
    """Base class for errors the engine reports to callers."""

    kind = ErrorKind.INVALID_STATE

    def __init__(self, message: str, subkind: str | None = None):
        super().__init__(message)
        self.message = message
        self.subkind = subkind

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r}, subkind={self.subkind!r})"


class NotFoundError(CollaborationError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(CollaborationError):
    kind = ErrorKind.UNAUTHORIZED

    NOT_YOUR_TURN = "not_your_turn"
    NOT_PARTICIPANT = "not_participant"
    ROLE_NOT_PERMITTED = "role_not_permitted"


class InvalidStateError(CollaborationError):
    kind = ErrorKind.INVALID_STATE


class InvalidInputError(CollaborationError):
    kind = ErrorKind.INVALID_INPUT


class PreconditionFailedError(CollaborationError):
    kind = ErrorKind.PRECONDITION_FAILED


class ExternalUnavailableError(CollaborationError):
    kind = ErrorKind.EXTERNAL_UNAVAILABLE


class SignatureInvalidError(CollaborationError):
    kind = ErrorKind.SIGNATURE_INVALID


class RateLimitedError(CollaborationError):
    kind = ErrorKind.RATE_LIMITED


class LedgerError(PreconditionFailedError):
    """Ledger or escrow bookkeeping could not be applied; the unit of work rolls back."""
