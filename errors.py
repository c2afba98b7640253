"""
Error taxonomy for the ordering API.

Core functions raise these; main.py maps each class to its HTTP status and a
{"message": ...} body. Subclasses only add a fixed message shape.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message)
        self.message = message


# -----------------
# 400 / validation
# -----------------

class ValidationError(AppError):
    status_code = 400


class MissingField(ValidationError):
    def __init__(self, field: str):
        super().__init__(f"{field} is required")
        self.field = field


class InvalidCartLine(ValidationError):
    def __init__(self, reason: str = "Each item must contain product_id, size and quantity", index=None):
        message = reason if index is None else f"Item {index}: {reason}"
        super().__init__(message)
        self.index = index


class InvalidSize(ValidationError):
    def __init__(self, size):
        super().__init__(f"Invalid size: {size}")
        self.size = size


class InvalidStatus(ValidationError):
    def __init__(self, status):
        super().__init__(f"Invalid status: {status}")
        self.status = status


class InvalidId(ValidationError):
    def __init__(self, field: str = "id"):
        super().__init__(f"Invalid request (invalid {field})")
        self.field = field


# -----------------
# 404 / not found
# -----------------

class NotFoundError(AppError):
    status_code = 404


class StoreNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Store not found")


class ProductNotFound(NotFoundError):
    def __init__(self, product_id=None):
        message = "Product not found" if product_id is None else f"Product not found: {product_id}"
        super().__init__(message)
        self.product_id = product_id


class OrderNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Order not found")


# -----------------
# 409 / conflicts
# -----------------

class ConflictError(AppError):
    status_code = 409


class InvalidTransition(ConflictError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change status from {current} to {requested}")
        self.current = current
        self.requested = requested


# -----------------
# Access / internal
# -----------------

class AuthError(AppError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403

    def __init__(self, message: str = "Access restricted to administrators"):
        super().__init__(message)


class InternalError(AppError):
    status_code = 500
