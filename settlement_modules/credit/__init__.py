"""
Credit Settlement Module (``settlement_modules.credit``).

Collection of customer dues in cash and online parts, and cancellation of a
collection.
"""

from settlement_modules.credit.service import CreditService

__all__ = ["CreditService"]
