"""
Settlement Kernel

The transactional core of the retail settlement platform:
- Append-only running-balance ledger
- Vendor-level stock records with an aggregate per product
- Typed failures with machine-readable codes
- Structured JSON logging
- Immutable audit trail of every settlement
"""

__version__ = "0.1.0"
