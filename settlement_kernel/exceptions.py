"""
Typed exception hierarchy for the settlement kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from SettlementError:

    SettlementError (base)
    |
    +-- ValidationError                  caller sent a malformed request
    |
    +-- BusinessRuleViolation            request is well-formed but not allowed
    |   +-- DiscountCapExceededError
    |   +-- WalkInCreditNotAllowedError
    |   +-- PaymentExceedsOutstandingError
    |   +-- PaymentAlreadyCancelledError
    |   +-- SaleAlreadyReturnedError
    |   +-- SaleNotReturnableError
    |   +-- PurchaseAlreadyReturnedError
    |   +-- NothingToReconcileError
    |
    +-- InsufficientStockError           vendors exhausted for a product
    |
    +-- NotFoundError
    |   +-- CustomerNotFoundError
    |   +-- ProductNotFoundError
    |   +-- VendorNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- SaleNotFoundError
    |   +-- PurchaseNotFoundError
    |
    +-- InvariantError
    |   +-- ImmutabilityViolationError
    |   +-- LedgerChainBrokenError
    |   +-- StockAggregateMismatchError
    |
    +-- SettlementFailure                infrastructure failure, safe to retry

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|------------------------------------
Validation      | VALIDATION_ERROR              | Bad input shape or range
----------------|-------------------------------|------------------------------------
Business rule   | DISCOUNT_CAP_EXCEEDED         | Discount above customer's cap
                | WALK_IN_CREDIT_NOT_ALLOWED    | Walk-in sale left unpaid
                | PAYMENT_EXCEEDS_OUTSTANDING   | Collection above balance owed
                | PAYMENT_ALREADY_CANCELLED     | Cancel of a cancelled payment
                | SALE_ALREADY_RETURNED         | Second return of one sale
                | SALE_NOT_RETURNABLE           | Voided/synthetic/stale sale
                | PURCHASE_ALREADY_RETURNED     | Second return of one purchase
                | NOTHING_TO_RECONCILE          | No product shows shrinkage
----------------|-------------------------------|------------------------------------
Stock           | INSUFFICIENT_STOCK            | Vendors exhausted for product
----------------|-------------------------------|------------------------------------
Not found       | *_NOT_FOUND                   | Referenced row missing
----------------|-------------------------------|------------------------------------
Invariant       | IMMUTABILITY_VIOLATION        | Modifying an append-only row
                | LEDGER_CHAIN_BROKEN           | balance_after replay mismatch
                | STOCK_AGGREGATE_MISMATCH      | Product stock != vendor sum
----------------|-------------------------------|------------------------------------
Infrastructure  | SETTLEMENT_FAILURE            | Database/driver failure

Every exception in the business taxonomy aborts the enclosing unit of work
with zero side effects. SettlementFailure is the only one a caller should
consider retrying.
"""

from decimal import Decimal


class SettlementError(Exception):
    """
    Base exception for all settlement errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_ERROR"


# Validation


class ValidationError(SettlementError):
    """Input failed shape or range validation. Nothing was attempted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Business rules


class BusinessRuleViolation(SettlementError):
    """Base exception for requests that are well-formed but not permitted."""

    code: str = "BUSINESS_RULE_VIOLATION"


class DiscountCapExceededError(BusinessRuleViolation):
    """Total discount exceeds the customer's maximum discount percentage."""

    code: str = "DISCOUNT_CAP_EXCEEDED"

    def __init__(
        self,
        customer_id: str,
        total_discount: Decimal,
        max_allowed: Decimal,
        max_percentage: Decimal,
    ):
        self.customer_id = customer_id
        self.total_discount = total_discount
        self.max_allowed = max_allowed
        self.max_percentage = max_percentage
        super().__init__(
            f"Total discount {total_discount:.2f} exceeds maximum allowed "
            f"{max_allowed:.2f} ({max_percentage}%)"
        )


class WalkInCreditNotAllowedError(BusinessRuleViolation):
    """A sale without a named customer must be fully paid."""

    code: str = "WALK_IN_CREDIT_NOT_ALLOWED"

    def __init__(self, due_amount: Decimal):
        self.due_amount = due_amount
        super().__init__(
            f"Walk-in sale cannot leave {due_amount:.2f} unpaid; attach a customer"
        )


class PaymentExceedsOutstandingError(BusinessRuleViolation):
    """Credit collection is larger than what the customer owes."""

    code: str = "PAYMENT_EXCEEDS_OUTSTANDING"

    def __init__(self, customer_id: str, amount: Decimal, outstanding: Decimal):
        self.customer_id = customer_id
        self.amount = amount
        self.outstanding = outstanding
        super().__init__(
            f"Payment {amount:.2f} exceeds outstanding balance {outstanding:.2f}"
        )


class PaymentAlreadyCancelledError(BusinessRuleViolation):
    """Credit payment has already been cancelled."""

    code: str = "PAYMENT_ALREADY_CANCELLED"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Credit payment {payment_id} is already cancelled")


class SaleAlreadyReturnedError(BusinessRuleViolation):
    """Sale has already been returned."""

    code: str = "SALE_ALREADY_RETURNED"

    def __init__(self, sale_id: str):
        self.sale_id = sale_id
        super().__init__(f"Sale {sale_id} has already been returned")


class SaleNotReturnableError(BusinessRuleViolation):
    """Sale is not eligible for a return."""

    code: str = "SALE_NOT_RETURNABLE"

    def __init__(self, sale_id: str, reason: str):
        self.sale_id = sale_id
        self.reason = reason
        super().__init__(f"Cannot return sale {sale_id}: {reason}")


class PurchaseAlreadyReturnedError(BusinessRuleViolation):
    """Purchase has already been returned."""

    code: str = "PURCHASE_ALREADY_RETURNED"

    def __init__(self, purchase_id: str):
        self.purchase_id = purchase_id
        super().__init__(f"Purchase {purchase_id} has already been returned")


class NothingToReconcileError(BusinessRuleViolation):
    """No submitted count shows a shortfall against system stock."""

    code: str = "NOTHING_TO_RECONCILE"

    def __init__(self, products_checked: int):
        self.products_checked = products_checked
        super().__init__(
            f"No stock difference found across {products_checked} counted product(s)"
        )


# Stock


class InsufficientStockError(SettlementError):
    """Vendor stock cannot cover the requested quantity of a product."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        product_name: str,
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}: "
            f"requested {requested}, available {available}"
        )


# Not found


class NotFoundError(SettlementError):
    """Referenced row does not exist in this organization."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class CustomerNotFoundError(NotFoundError):
    code: str = "CUSTOMER_NOT_FOUND"
    entity_type: str = "Customer"


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity_type: str = "Product"


class VendorNotFoundError(NotFoundError):
    code: str = "VENDOR_NOT_FOUND"
    entity_type: str = "Vendor"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type: str = "CreditPayment"


class SaleNotFoundError(NotFoundError):
    code: str = "SALE_NOT_FOUND"
    entity_type: str = "Sale"


class PurchaseNotFoundError(NotFoundError):
    code: str = "PURCHASE_NOT_FOUND"
    entity_type: str = "Purchase"


# Invariants


class InvariantError(SettlementError):
    """Base exception for a violated persistence invariant."""

    code: str = "INVARIANT_ERROR"


class ImmutabilityViolationError(InvariantError):
    """
    Attempted to modify or delete an immutable record.

    LedgerEntry, CashbookEntry, StockClosing and AuditEvent are immutable
    after insert. Sale, Purchase and CreditPayment may not be deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class LedgerChainBrokenError(InvariantError):
    """A stored balance_after does not match the replayed running balance."""

    code: str = "LEDGER_CHAIN_BROKEN"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        seq: int,
        expected_balance: Decimal,
        stored_balance: Decimal,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.seq = seq
        self.expected_balance = expected_balance
        self.stored_balance = stored_balance
        super().__init__(
            f"Ledger chain broken for {entity_type} {entity_id} at seq {seq}: "
            f"expected {expected_balance}, stored {stored_balance}"
        )


class StockAggregateMismatchError(InvariantError):
    """Product.current_stock differs from the sum of its vendor stock rows."""

    code: str = "STOCK_AGGREGATE_MISMATCH"

    def __init__(self, product_id: str, product_stock: int, vendor_total: int):
        self.product_id = product_id
        self.product_stock = product_stock
        self.vendor_total = vendor_total
        super().__init__(
            f"Product {product_id} stock {product_stock} does not match "
            f"vendor stock total {vendor_total}"
        )


# Infrastructure


class SettlementFailure(SettlementError):
    """
    Unexpected failure while executing or committing a settlement.

    The unit of work was rolled back. Unlike the business taxonomy above,
    the request itself may be valid and the caller may retry.
    """

    code: str = "SETTLEMENT_FAILURE"

    def __init__(self, operation: str, cause: str):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed and was rolled back: {cause}")
