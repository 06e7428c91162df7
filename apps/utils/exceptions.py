from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class BusinessLogicException(Exception):
    """
    Raised when a domain rule is violated (e.g. 'Stock not available').
    Subclasses pin the HTTP status and the stable error code.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "business_error"

    def __init__(self, message, code=None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class Unauthenticated(BusinessLogicException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_code = "unauthenticated"

    def __init__(self, message="Authentication required.", code=None):
        super().__init__(message, code)


class Forbidden(BusinessLogicException):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = "forbidden"

    def __init__(self, message="You do not have access to this resource.", code=None):
        super().__init__(message, code)


class NotFound(BusinessLogicException):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class InvalidArgument(BusinessLogicException):
    default_code = "invalid_argument"


class InvalidState(BusinessLogicException):
    default_code = "invalid_state"


class InvalidTransition(InvalidState):
    default_code = "invalid_transition"


class InsufficientStock(InvalidState):
    """
    Requested quantity is above what the product has on hand right now.
    """
    default_code = "insufficient_stock"

    def __init__(self, product_name, available, requested):
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough stock for {product_name}. "
            f"Required: {requested}, Available: {available}"
        )


class Conflict(BusinessLogicException):
    """
    A conditional write lost a race. Always safe to retry.
    """
    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"
    retryable = True


class AlreadyExists(BusinessLogicException):
    status_code = status.HTTP_409_CONFLICT
    default_code = "already_exists"


def custom_exception_handler(exc, context):
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if isinstance(exc, BusinessLogicException):
        body = {"error": exc.message, "code": exc.code}
        if getattr(exc, "retryable", False):
            body["retry"] = True
        return Response(body, status=exc.status_code)

    # If response is None, it's an unhandled server error (500)
    if response is None:
        logger.error(f"Unhandled Exception: {exc}", exc_info=True)
        return Response(
            {"error": "Internal Server Error", "code": "server_error"},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    return response
