"""Domain models for the settlement kernel."""

from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.models.cashbook import CashbookEntry, CashbookSource
from settlement_kernel.models.catalog import (
    Customer,
    CustomerStatus,
    Product,
    ProductStatus,
    Vendor,
    VendorStatus,
    VendorStock,
)
from settlement_kernel.models.credit import CreditPayment, CreditPaymentStatus
from settlement_kernel.models.ledger import (
    LedgerEntityType,
    LedgerEntry,
    LedgerHead,
    LedgerReferenceType,
)
from settlement_kernel.models.purchase import Purchase, PurchaseItem
from settlement_kernel.models.sale import (
    PaymentMode,
    PaymentStatus,
    Sale,
    SaleItem,
    SaleKind,
    SaleStatus,
    SaleVendorAllocation,
    SubBill,
    SubBillItem,
)
from settlement_kernel.models.sequence import SequenceCounter
from settlement_kernel.models.stock_closing import StockClosing, StockClosingItem

__all__ = [
    "AuditAction",
    "AuditEvent",
    "CashbookEntry",
    "CashbookSource",
    "CreditPayment",
    "CreditPaymentStatus",
    "Customer",
    "CustomerStatus",
    "LedgerEntityType",
    "LedgerEntry",
    "LedgerHead",
    "LedgerReferenceType",
    "PaymentMode",
    "PaymentStatus",
    "Product",
    "ProductStatus",
    "Purchase",
    "PurchaseItem",
    "Sale",
    "SaleItem",
    "SaleKind",
    "SaleStatus",
    "SaleVendorAllocation",
    "SequenceCounter",
    "StockClosing",
    "StockClosingItem",
    "SubBill",
    "SubBillItem",
    "Vendor",
    "VendorStatus",
    "VendorStock",
]
