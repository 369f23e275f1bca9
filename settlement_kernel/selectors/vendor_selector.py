"""
Module: settlement_kernel.selectors.vendor_selector
Responsibility: Vendor deduction order for stock allocation.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Order is (priority ascending, id ascending), recomputed on every call
      with no caching.  Equal priorities therefore resolve the same way on
      every run, which keeps allocation reproducible.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.models.catalog import Vendor, VendorStatus
from settlement_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class VendorInfo:
    """Vendor identity and rank used by the stock allocator."""

    id: UUID
    name: str
    priority: int
    status: str


class VendorSelector(BaseSelector):

    def ordered_vendors(
        self,
        organization_id: UUID,
        active_only: bool = True,
    ) -> list[VendorInfo]:
        """Vendors of the organization in deduction order.

        Args:
            organization_id: Tenant.
            active_only: When True, DELETED vendors are excluded.  Sale
                fulfillment uses active vendors only; reconciliation sources
                shrinkage from every vendor.
        """
        stmt = select(Vendor).where(Vendor.organization_id == organization_id)
        if active_only:
            stmt = stmt.where(Vendor.status == VendorStatus.ACTIVE.value)
        vendors = self.session.execute(stmt).scalars().all()

        # Sorted in Python so the id tie-break uses the UUID string form on
        # every backend.
        ordered = sorted(vendors, key=lambda v: (v.priority, str(v.id)))
        return [
            VendorInfo(id=v.id, name=v.name, priority=v.priority, status=v.status)
            for v in ordered
        ]
