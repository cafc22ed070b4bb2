"""
Domain errors raised by the services.

Each class carries the HTTP status it is rendered with at the API boundary.
Extra keyword arguments end up next to ``detail`` in the response body.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(ShopError):
    status_code = 400


class AuthError(ShopError):
    status_code = 401


class ForbiddenError(ShopError):
    status_code = 403


class NotFoundError(ShopError):
    status_code = 404


class ConflictError(ShopError):
    status_code = 409


class ConcurrencyConflictError(ConflictError):
    """A conditional write lost against a concurrent request."""


class InsufficientStockError(ShopError):
    status_code = 400


class EmptyCartError(ShopError):
    status_code = 400


class ExpiredError(ShopError):
    status_code = 400


class InvalidCodeError(ShopError):
    status_code = 400


class RateLimitError(ShopError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, retry_after=retry_after)
        self.retry_after = retry_after


class InternalError(ShopError):
    status_code = 500
