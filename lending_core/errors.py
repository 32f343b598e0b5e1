"""
Error Taxonomy Module

Every failure raised by the lending engine derives from LendingError and
carries an HTTP status code and a stable machine-readable code. Only
LockContentionError is safe to retry.
"""


class LendingError(Exception):
    """Base exception for all lending engine errors"""
    status_code = 400
    code = "lending_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or self.code


class ValidationError(LendingError, ValueError):
    """Input outside the allowed range (rate, amount, installment count)"""
    status_code = 422
    code = "validation_error"


class InvalidAmountError(ValidationError):
    """Monetary amount must be a positive integer of minor units"""
    code = "invalid_amount"


class NotFoundError(LendingError):
    """Referenced loan, installment, proof or flag does not exist"""
    status_code = 404
    code = "not_found"


class InvalidStateError(LendingError):
    """Operation not allowed in the entity's current lifecycle state"""
    status_code = 409
    code = "invalid_state"


class LoanClosedError(InvalidStateError):
    """Loan is in a terminal state and accepts no further payments"""
    code = "loan_closed"


class ConflictError(LendingError):
    """Operation conflicts with existing data or a concurrent operation"""
    status_code = 409
    code = "conflict"


class ActiveLoanExists(ConflictError):
    """Borrower already has an active loan"""
    code = "active_loan_exists"


class LockContentionError(ConflictError):
    """Another payment is being allocated against the same loan"""
    code = "lock_contention"


class AuthorizationError(LendingError):
    """Actor is not allowed to perform this operation"""
    status_code = 403
    code = "authorization_error"


class LenderRestrictedError(AuthorizationError):
    """Lender is suspended or banned and cannot originate loans"""
    code = "lender_restricted"
