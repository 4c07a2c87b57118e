"""OpenWord admin exception hierarchy."""


class AdminError(Exception):
    """Base exception for all admin errors."""

    def __init__(self, message: str = "", code: str = "ADMIN_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)

    def as_result(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(AdminError):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message, code="VALIDATION_ERROR")


class MigrationNotFoundError(AdminError):
    """Raised when a price migration cannot be found."""

    def __init__(self, message: str = "Migration not found"):
        super().__init__(message, code="NOT_FOUND")


class MigrationStateError(AdminError):
    """Raised when a migration is in the wrong status for an operation."""

    def __init__(self, message: str = "Migration is in the wrong state"):
        super().__init__(message, code="INVALID_STATE")


class SubscriptionProviderError(AdminError):
    """Raised when the payment processor rejects or fails a call."""

    def __init__(self, message: str = "Subscription provider error"):
        super().__init__(message, code="PROVIDER_ERROR")


class JobLeaseError(AdminError):
    """Raised when a scheduled job's lease is held by another runner."""

    def __init__(self, message: str = "Job lease is held elsewhere"):
        super().__init__(message, code="LEASE_HELD")
