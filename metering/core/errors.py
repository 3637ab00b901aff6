"""Engine error taxonomy.

Business denials (quota exhausted, insufficient credits) are Decision values,
not exceptions. Only configuration and infrastructure failures are raised.
status_code is a hint for the request-handling layer that maps errors to HTTP.
"""

from typing import Optional


class AppError(Exception):
    code = "app_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "retryable": self.retryable,
                "request_id": self.request_id,
            }
        }


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class UnknownUserError(AppError, LookupError):
    """No subscription is known for the user."""
    code = "unknown_user"
    status_code = 404

    def __init__(self, user_id: str, **kwargs):
        self.user_id = user_id
        super().__init__(f"No subscription found for user {user_id}", **kwargs)


class UnknownFeatureError(AppError, LookupError):
    """Feature is not registered in the policy catalogue."""
    code = "unknown_feature"
    status_code = 404

    def __init__(self, feature: str, **kwargs):
        self.feature = feature
        super().__init__(f"Feature {feature} is not registered", **kwargs)


class StorageUnavailableError(AppError):
    """Ledger store failed; the enclosing transaction was rolled back."""
    code = "storage_unavailable"
    status_code = 503
    retryable = True

    def __init__(self, message: str = "Ledger storage unavailable", *, operation: Optional[str] = None, cause: Optional[Exception] = None, **kwargs):
        self.operation = operation
        self.cause = cause
        super().__init__(message, **kwargs)
