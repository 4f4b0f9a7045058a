from decimal import Decimal


class ApplicationError(Exception):
    """Base application-layer error, independent from transport concerns."""


class NotFoundError(ApplicationError):
    """Raised when an expected entity does not exist."""


class ConflictError(ApplicationError):
    """Raised when a uniqueness or state conflict occurs."""


class ValidationError(ApplicationError):
    """Raised when application-level validation fails."""


class DuplicateInvoiceError(ConflictError):
    """An active invoice already exists for the student, fee definition and period."""


class DuplicateTransactionError(ConflictError):
    """A payment already carries the external transaction id."""


class InvalidStateError(ConflictError):
    """Operation is illegal for the current status of the entity."""


class NothingToApproveError(ConflictError):
    """Invoice has no discount waiting for approval."""


class AlreadyActiveError(ConflictError):
    pass


class AlreadyCompletedError(ConflictError):
    pass


class AlreadyRefundedError(ConflictError):
    pass


class AlreadyPaidError(ConflictError):
    pass


class NotCompletedError(ConflictError):
    pass


class NotActiveError(ConflictError):
    pass


class InvalidAmountError(ValidationError):
    """Amount is non-positive or exceeds what the invoice allows."""


class AmountExceedsBalanceError(InvalidAmountError):
    def __init__(self, *, requested: Decimal, available: Decimal) -> None:
        self.requested = requested
        self.available = available
        super().__init__(f"Payment amount exceeds balance: requested {requested}, available {available}")


class NoBalanceError(ValidationError):
    pass


class InvalidIndexError(ValidationError):
    pass


class GatewayVerificationError(ApplicationError):
    """Callback rejected during verification. Converted to a failure result, never surfaced."""

    outcome: str = "rejected"


class TransactionExpiredError(GatewayVerificationError):
    outcome = "expired"


class SignatureInvalidError(GatewayVerificationError):
    outcome = "invalid_signature"


class AmountMismatchError(GatewayVerificationError):
    outcome = "amount_mismatch"

    def __init__(self, *, expected: Decimal, received: str) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Amount mismatch: expected {expected}, received {received}")


class GatewayNotCompleteError(GatewayVerificationError):
    outcome = "not_complete"
