"""Custom exceptions for the storefront application.

Every exception carries the HTTP status it maps to at the boundary and a
short title; the app factory turns them into the structured error payload.
"""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    title = "Internal Server Error"

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['status'] = self.status_code
        rv['error'] = self.title
        rv['message'] = self.message
        return rv


class BusinessLogicError(StorefrontError):
    """Exception raised for business logic violations."""
    title = "Bad Request"

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Raised when request data fails field validation."""
    title = "Validation Failed"

    def __init__(self, errors, message="Invalid input data"):
        self.errors = list(errors)
        super().__init__(message, 400, {'errors': self.errors})


class InvalidArgumentError(BusinessLogicError):
    """Raised for unrecognized enum-like values (statuses, methods)."""
    title = "Invalid Argument"


class EmptyCartError(BusinessLogicError):
    """Raised when checking out a cart with no lines."""
    title = "Empty Cart"

    def __init__(self, message="Cart is empty"):
        super().__init__(message)


class UnauthorizedError(StorefrontError):
    """Raised when the request carries no authenticated user."""
    title = "Authentication Required"

    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)


class AccessDeniedError(StorefrontError):
    """Raised when a resource belongs to another user or a role is missing."""
    title = "Access Denied"

    def __init__(self, message="Access denied"):
        super().__init__(message, 403)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    title = "Not Found"

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ConflictError(StorefrontError):
    """Raised when a request conflicts with existing state."""
    title = "Conflict"

    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class InsufficientStockError(ConflictError):
    """Raised when an operation fails due to lack of stock."""
    title = "Insufficient Stock"

    def __init__(self, product_name, requested, available):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        message = (
            f"Insufficient stock for '{product_name}'. "
            f"Available: {available}, Requested: {requested}"
        )
        super().__init__(message, {
            'product': product_name,
            'requested': requested,
            'available': available,
        })


class ProductUnavailableError(ConflictError):
    """Raised when a product is inactive."""
    title = "Product Unavailable"

    def __init__(self, product_name):
        self.product_name = product_name
        super().__init__(
            f"Product '{product_name}' is no longer available",
            {'product': product_name}
        )


class InvalidOperationError(ConflictError):
    """Raised for illegal order state transitions."""
    title = "Invalid Operation"

    def __init__(self, message, current_status=None):
        self.current_status = current_status
        payload = {'current_status': current_status} if current_status else None
        super().__init__(message, payload)


class ConcurrentModificationError(ConflictError):
    """Raised when a concurrent writer keeps winning the optimistic lock."""
    title = "Concurrent Modification"

    def __init__(self, message="The resource was modified concurrently, please retry"):
        super().__init__(message)
