# Overview: Typed failures for the sale and void transactions.

"""
Sale/void error taxonomy.

Every failure aborts the whole transaction. Routes translate these into
JSON responses using error_kind and status_code; nothing here is retried
except TransactionConflictError, which is raised only after the retry
budget in services.concurrency is spent.
"""


class SaleError(Exception):
    """Raised for sale operation errors."""
    error_kind = "SALE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "error_kind": self.error_kind,
            "details": self.details,
        }


class NotAuthenticatedError(SaleError):
    error_kind = "NOT_AUTHENTICATED"
    status_code = 401


class NotAuthorizedError(SaleError):
    error_kind = "NOT_AUTHORIZED"
    status_code = 403


class EmptyCartError(SaleError):
    error_kind = "EMPTY_CART"
    status_code = 400


class InvalidCartError(SaleError):
    error_kind = "INVALID_CART"
    status_code = 400


class InsufficientPaymentError(SaleError):
    error_kind = "INSUFFICIENT_PAYMENT"
    status_code = 400


class ProductNotFoundError(SaleError):
    error_kind = "PRODUCT_NOT_FOUND"
    status_code = 404


class InsufficientStockError(SaleError):
    """
    A sale would drive one or more base SKUs below zero.

    details["items"] lists every offending base SKU; sku and shortfall
    describe the first one.
    """
    error_kind = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, shortages: list[dict]):
        first = shortages[0]
        super().__init__(
            f"Not enough stock for {first['sku']}. "
            f"Required: {first['requested']}, available: {first['available']}",
            details={"items": shortages},
        )
        self.sku = first["sku"]
        self.shortfall = first["shortfall"]
        self.shortages = shortages


class BaseProductNotFoundError(SaleError):
    """A packaging variant references a base SKU with no base record."""
    error_kind = "BASE_PRODUCT_NOT_FOUND"
    status_code = 422

    def __init__(self, base_sku: str):
        super().__init__(
            f"Base product definition missing for SKU {base_sku}",
            details={"base_product_sku": base_sku},
        )
        self.base_sku = base_sku


class SaleNotFoundError(SaleError):
    error_kind = "SALE_NOT_FOUND"
    status_code = 404


class AlreadyVoidedError(SaleError):
    error_kind = "ALREADY_VOIDED"
    status_code = 409


class TransactionConflictError(SaleError):
    error_kind = "TRANSACTION_CONFLICT"
    status_code = 409
