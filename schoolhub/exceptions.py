from typing import Optional


class DomainError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400
    default_code = "BUSINESS_RULE_VIOLATION"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class NotFoundError(DomainError):
    """Entity is missing or belongs to a different school."""

    status_code = 404
    default_code = "NOT_FOUND"


class BusinessRuleError(DomainError):
    status_code = 400
    default_code = "BUSINESS_RULE_VIOLATION"


class AuthenticationError(DomainError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(DomainError):
    status_code = 403
    default_code = "FORBIDDEN"


class AIConfigurationError(Exception):
    """Raised at startup when the AI gateway is misconfigured."""
