"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Request data is malformed or breaks a business rule"""

    pass


class InsufficientBalance(DomainException):
    """Customer does not hold enough loyalty coins for the requested spend"""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient coin balance: requested {requested}, available {available}")


class InsufficientCredit(DomainException):
    """Installment exceeds the available monthly credit or the entry is too low"""

    pass


class NotFoundError(DomainException):
    """Referenced record does not exist"""

    def __init__(self, resource: str, identifier: object):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} '{identifier}' not found")


class ConflictError(DomainException):
    """Operation not allowed in the record's current state"""

    pass


class GatewayUnavailable(DomainException):
    """Payment gateway timed out or returned an error; payment status is unknown"""

    pass


class StoreWriteFailure(DomainException):
    """Ledger write could not be completed"""

    pass


class StaleEventIgnored(DomainException):
    """Webhook refers to an invoice that has already left the open set"""

    def __init__(self, invoice_id: object, current_status: str):
        self.invoice_id = invoice_id
        self.current_status = current_status
        super().__init__(f"Invoice {invoice_id} already settled as '{current_status}'")
