from typing import Optional


class DomainException(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message
        super().__init__(message)


class ValidationError(DomainException):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(DomainException):
    status_code = 404


class OrderNotFoundError(NotFoundError):
    pass


class CouponNotFoundError(NotFoundError):
    pass


class CouponRejectedError(ValidationError):
    """Отказ, текст которого можно показать покупателю"""

    def __init__(self, message: str):
        super().__init__(message, field="code")


class UnauthorizedError(DomainException):
    status_code = 401


class ForbiddenError(DomainException):
    status_code = 403


class RateLimitedError(DomainException):
    status_code = 429

    def __init__(self, retry_after: int, message: str = "Too many requests. Please try again later."):
        self.retry_after = retry_after
        super().__init__(message)


class ConflictError(DomainException):
    status_code = 409


class InvalidTransitionError(ConflictError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change order status from {current.value} to {target.value}")


class InvalidSignatureError(DomainException):
    status_code = 400


class ExternalDependencyError(DomainException):
    status_code = 500


class NotificationServiceError(ExternalDependencyError):
    pass
