"""
Settlement Modules.

Transactional entry points over the settlement kernel and engines.  Each
module holds its request objects (the inputs) and a service that owns one
unit of work per public method.

Modules:
- sales: cart settlement, sub-bills, full returns
- purchasing: vendor receipts with VAT/TCS, full returns
- inventory: end-of-day reconciliation and morning-stock rollover
- credit: collection of customer dues and cancellation

Processing logic that needs no database lives in settlement_engines.
"""

from settlement_modules import credit, inventory, purchasing, sales

__all__ = ["credit", "inventory", "purchasing", "sales"]
