"""
Ledger configuration schema.

Typed, frozen dataclasses for every tunable the ledger core reads.  YAML
documents are parsed into these types by ``hoa_config.loader``; services
receive a ``LedgerConfig`` by injection and never read files themselves.

Each dataclass validates itself in ``__post_init__`` and raises
``ValueError`` with a descriptive message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hoa_kernel.domain.billing import BillingModule

PARTIAL_PAYMENT_POLICIES = ("penalty_first", "base_first")


def resolve_timezone(name: str) -> tzinfo:
    """``"UTC"`` or an IANA zone name such as ``"America/Cancun"``."""
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {name!r}") from exc


@dataclass(frozen=True)
class PenaltyConfig:
    """Late-payment penalty terms."""

    penalty_rate: Decimal = Decimal("0.05")
    penalty_days: int = 10

    def __post_init__(self):
        if not isinstance(self.penalty_rate, Decimal):
            object.__setattr__(self, "penalty_rate", Decimal(str(self.penalty_rate)))
        if not self.penalty_rate.is_finite() or self.penalty_rate <= 0:
            raise ValueError(f"penalty_rate must be positive, got {self.penalty_rate}")
        if self.penalty_rate >= 1:
            raise ValueError(f"penalty_rate is a monthly fraction (< 1), got {self.penalty_rate}")
        if self.penalty_days < 0:
            raise ValueError(f"penalty_days cannot be negative, got {self.penalty_days}")


@dataclass(frozen=True)
class MeterConfig:
    """Meter and consumption limits.  ``rate_per_unit`` is minor units per unit."""

    meter_max: int = 10000
    consumption_ceiling: int = 1000
    warning_threshold: int = 200
    rate_per_unit: Decimal = Decimal("0")

    def __post_init__(self):
        if not isinstance(self.rate_per_unit, Decimal):
            object.__setattr__(self, "rate_per_unit", Decimal(str(self.rate_per_unit)))
        if self.meter_max <= 0:
            raise ValueError(f"meter_max must be positive, got {self.meter_max}")
        if self.consumption_ceiling <= 0:
            raise ValueError(
                f"consumption_ceiling must be positive, got {self.consumption_ceiling}"
            )
        if not 0 <= self.warning_threshold <= self.consumption_ceiling:
            raise ValueError(
                f"warning_threshold must be between 0 and consumption_ceiling "
                f"({self.consumption_ceiling}), got {self.warning_threshold}"
            )
        if self.rate_per_unit < 0:
            raise ValueError(f"rate_per_unit cannot be negative, got {self.rate_per_unit}")


@dataclass(frozen=True)
class LedgerConfig:
    """Top-level configuration for the payment and compensation services."""

    fiscal_year_start_month: int = 7
    integrity_tolerance: int = 100
    partial_payment_policy: str = "penalty_first"
    default_billing_module: str = BillingModule.WATER.value
    timezone: str = "UTC"
    penalty: PenaltyConfig = field(default_factory=PenaltyConfig)
    meter: MeterConfig = field(default_factory=MeterConfig)

    def __post_init__(self):
        if not 1 <= self.fiscal_year_start_month <= 12:
            raise ValueError(
                f"fiscal_year_start_month must be 1-12, got {self.fiscal_year_start_month}"
            )
        if self.integrity_tolerance < 0:
            raise ValueError(
                f"integrity_tolerance cannot be negative, got {self.integrity_tolerance}"
            )
        if self.partial_payment_policy not in PARTIAL_PAYMENT_POLICIES:
            raise ValueError(
                f"partial_payment_policy must be one of {PARTIAL_PAYMENT_POLICIES}, "
                f"got {self.partial_payment_policy!r}"
            )
        valid_modules = tuple(m.value for m in BillingModule)
        if self.default_billing_module not in valid_modules:
            raise ValueError(
                f"default_billing_module must be one of {valid_modules}, "
                f"got {self.default_billing_module!r}"
            )
        resolve_timezone(self.timezone)
