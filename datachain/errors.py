"""
Typed errors raised by the DataChain core.

Every failure path in the content protection unit, the registry and the
external service clients raises one of these, so the API layer can map
them to user-facing responses without catching bare exceptions.
"""

from typing import Optional


class DataChainError(Exception):
    """Base class for all DataChain errors"""
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidInput(DataChainError):
    """Malformed or missing required field"""
    kind = "invalid_input"


class NotFound(DataChainError):
    """Reference to a dataset or grant that does not exist"""
    kind = "not_found"


class AccessDenied(DataChainError):
    """Caller is not authorized for the operation"""
    kind = "access_denied"


class IntegrityError(DataChainError):
    """Authentication tag or hash verification failed"""
    kind = "integrity_error"


class InternalError(DataChainError):
    """Unexpected failure in an underlying primitive"""
    kind = "internal_error"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ExternalServiceError(DataChainError):
    """The blob store or the chain service failed or is not configured"""
    kind = "external_service_error"

    def __init__(self, message: str = "", service: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.service = service
        self.cause = cause
