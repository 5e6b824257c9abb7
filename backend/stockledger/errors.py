# Overview: Error kinds raised by the stock ledger services.

"""
Every public service call raises one of these synchronously to its caller.
Callers (API layer, CLI) translate them into their own response format:

- ValidationError: malformed input (zero quantity, missing reason, ...)       -> 400
- NotFoundError: unknown warehouse / product / variant / inventory            -> 404
- InsufficientStockError: source level cannot cover a guarded decrement       -> 409
- InvalidStateTransitionError: workflow action not allowed in current status -> 409
- PersistenceError: the underlying transaction failed and was rolled back     -> 500
"""


class StockLedgerError(Exception):
    """Base class for stock ledger failures."""


class ValidationError(StockLedgerError, ValueError):
    """400-level input problem."""


class NotFoundError(StockLedgerError, LookupError):
    """Referenced entity does not exist."""


class InsufficientStockError(StockLedgerError):
    """Raised when a guarded decrement exceeds the quantity on hand."""

    def __init__(self, message: str, *, available=None, requested=None):
        super().__init__(message)
        self.available = available
        self.requested = requested


class InvalidStateTransitionError(StockLedgerError):
    """Raised when a workflow document is not in a status that allows the action."""

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class PersistenceError(StockLedgerError):
    """Storage failure; the whole unit of work was rolled back."""
