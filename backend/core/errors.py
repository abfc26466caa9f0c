"""
Service-layer exceptions. Routes translate them into HTTP responses.
"""


class ServiceError(Exception):
    """Base class for expected failures raised by backend services."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ServiceError):
    status_code = 400


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class SubscriptionRequiredError(PermissionDeniedError):
    pass


class ContentNotFoundError(ServiceError):
    status_code = 404


class SubscriptionError(ServiceError):
    """Payment provider failures (STK push rejected or unreachable)."""
    status_code = 502
