"""
Settlement configuration schema.

Typed, frozen view of ``defaults.yaml`` (plus any overlay file).  Every
section validates itself in ``__post_init__`` so a bad value fails at load
time rather than in the middle of a settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from decimal import Decimal

from settlement_kernel.models.sale import PaymentMode


@dataclass(frozen=True)
class BillingConfig:
    """Sale-side limits.

    Contract:
        value_ceiling is the largest currency value one bill may carry
        before a sale is split into sub-bills; volume_ceiling_ml is the
        same for a shrinkage sale, in millilitres.
    """

    value_ceiling: Decimal = Decimal("250000")
    volume_ceiling_ml: int = 2500
    discount_epsilon: Decimal = Decimal("0.01")
    default_payment_mode: str = PaymentMode.CASH.value

    def __post_init__(self) -> None:
        if self.value_ceiling <= 0:
            raise ValueError("billing.value_ceiling must be positive")
        if self.volume_ceiling_ml <= 0:
            raise ValueError("billing.volume_ceiling_ml must be positive")
        if self.discount_epsilon < 0:
            raise ValueError("billing.discount_epsilon cannot be negative")
        PaymentMode(self.default_payment_mode)


@dataclass(frozen=True)
class PurchasingConfig:
    """Purchase tax rates, in percent."""

    vat_rate: Decimal = Decimal("35")
    tcs_rate: Decimal = Decimal("1")

    def __post_init__(self) -> None:
        for name in ("vat_rate", "tcs_rate"):
            rate = getattr(self, name)
            if rate < 0 or rate > 100:
                raise ValueError(f"purchasing.{name} must be within 0..100, got {rate}")


@dataclass(frozen=True)
class NumberingConfig:
    """Document number prefixes and zero-padded width."""

    sale_prefix: str = "SAL"
    purchase_prefix: str = "PUR"
    shrinkage_prefix: str = "DISC"
    return_prefix: str = "RET"
    width: int = 6

    def __post_init__(self) -> None:
        prefixes = (
            self.sale_prefix,
            self.purchase_prefix,
            self.shrinkage_prefix,
            self.return_prefix,
        )
        if not all(prefixes):
            raise ValueError("numbering prefixes cannot be empty")
        if len(set(prefixes)) != len(prefixes):
            raise ValueError("numbering prefixes must be distinct")
        if not 1 <= self.width <= 12:
            raise ValueError("numbering.width must be within 1..12")


@dataclass(frozen=True)
class ReconciliationConfig:
    """End-of-day times.

    closing_time stamps the shrinkage sale; rollover_time is when the next
    business day's morning stock takes effect.
    """

    closing_time: time = time(23, 59, 59)
    rollover_time: time = time(0, 0, 1)

    def __post_init__(self) -> None:
        if self.rollover_time >= self.closing_time:
            raise ValueError(
                "reconciliation.rollover_time must be earlier in the day than closing_time"
            )


@dataclass(frozen=True)
class SettlementConfig:
    """The complete runtime configuration."""

    billing: BillingConfig
    purchasing: PurchasingConfig
    numbering: NumberingConfig
    reconciliation: ReconciliationConfig
    checksum: str = ""
