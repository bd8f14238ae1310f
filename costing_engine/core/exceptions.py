"""
Costing Engine Exceptions
Typed business and ledger errors raised by the costing services
"""


class CostingException(Exception):
    """Base exception for the costing engine"""
    status_code = 400
    code = "costing_error"

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(CostingException):
    """Raised when input is malformed or missing; nothing has been changed"""
    status_code = 422
    code = "validation_error"


class NotFoundError(CostingException):
    """Raised when a referenced batch, movement, cost set or allocation does not exist"""
    status_code = 404
    code = "not_found"


class IndeterminateAllocationBasis(CostingException):
    """Raised when the share weights of a purchase order sum to zero"""
    status_code = 422
    code = "indeterminate_allocation_basis"


class MissingAllocationBasisAttribute(CostingException):
    """Raised when a batch lacks the attribute the allocation basis needs"""
    status_code = 422
    code = "missing_allocation_basis_attribute"


class AlreadyAllocated(CostingException):
    """Raised when a cost set that was already applied is applied differently"""
    status_code = 409
    code = "already_allocated"


class InsufficientStock(CostingException):
    """Raised when a requested quantity exceeds the stock that can cover it"""
    status_code = 409
    code = "insufficient_stock"


class InconsistentLedgerState(CostingException):
    """
    Raised when a ledger invariant is found broken mid-computation.
    Fatal: the enclosing transaction is rolled back and an operator has to step in.
    """
    status_code = 500
    code = "inconsistent_ledger_state"


class LedgerConflict(CostingException):
    """Raised when a batch keeps changing underneath a posting; the caller may retry"""
    status_code = 409
    code = "ledger_conflict"
