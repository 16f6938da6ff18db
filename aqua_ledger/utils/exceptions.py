"""
Ledger Exceptions
Typed failures raised by the order ledger and daily closing services
"""


class LedgerError(Exception):
    """Base class for all ledger failures"""

    kind = 'LEDGER_ERROR'
    retryable = False

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        """Serialize error for the calling layer"""
        data = {'error': self.kind, 'message': self.message}
        if self.details:
            data['details'] = self.details
        return data


class NotFound(LedgerError):
    """Customer, order or rider does not exist"""
    kind = 'NOT_FOUND'


class InvalidRequest(LedgerError):
    """Malformed input or input violating a creation constraint"""
    kind = 'INVALID_REQUEST'


class InvalidState(LedgerError):
    """Operation is not legal for the current order or customer state"""
    kind = 'INVALID_STATE'


class Conflict(LedgerError):
    """Concurrent update detected; safe to retry from scratch"""
    kind = 'CONFLICT'
    retryable = True


class StoreFailure(LedgerError):
    """Transaction could not be committed; safe to retry from scratch"""
    kind = 'STORE_FAILURE'
    retryable = True
