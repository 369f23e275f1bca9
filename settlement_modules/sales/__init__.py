"""
Sales Settlement Module (``settlement_modules.sales``).

Cart settlement with priority stock allocation, customer discount caps,
credit dues, customer ledger posting and value-bounded sub-bills, plus full
sale returns.
"""

from settlement_modules.sales.models import SaleLineRequest, SaleRequest
from settlement_modules.sales.service import SaleService

__all__ = ["SaleLineRequest", "SaleRequest", "SaleService"]
