"""
Ledger Exceptions

Error taxonomy shared by the service layer, the store backends and the HTTP
adapter. Every error carries a stable error code for rendering.
"""

from typing import Optional, Union


class LedgerError(Exception):
    """Base class for all ledger errors"""

    error_code = "LEDGER_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code


class ValidationError(LedgerError):
    """Malformed or out-of-range input, raised before any mutation"""

    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NotFoundError(LedgerError):
    """Transaction id or reference is absent"""

    error_code = "TRANSACTION_NOT_FOUND"

    def __init__(self, key: Union[int, str]):
        if isinstance(key, int):
            message = f"Transaction with id {key} not found"
        else:
            message = f"Transaction with reference {key} not found"
        super().__init__(message)
        self.key = key


class DuplicateError(LedgerError):
    """Reference collision at insert time"""

    error_code = "DUPLICATE_TRANSACTION"

    def __init__(self, reference: str):
        super().__init__(f"Transaction with reference {reference} already exists")
        self.reference = reference


class InternalError(LedgerError):
    """Store failure or unexpected condition"""

    error_code = "INTERNAL_ERROR"


class ReferenceGenerationError(InternalError):
    """No unused reference could be produced within the attempt limit"""

    error_code = "REFERENCE_GENERATION_FAILED"

    def __init__(self, attempts: int):
        super().__init__(f"Could not generate a unique transaction reference after {attempts} attempts")
        self.attempts = attempts
