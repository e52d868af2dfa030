"""
hoa_engines.metered_billing -- Metered (water) charge calculation.

Composes the consumption and penalty arithmetic from ``hoa_engines.penalty``
into one calculator.  The penalty policy is injected as a
``PenaltyCalculator`` instance rather than inherited, so a water billing
service and any other metered utility share the same math.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from hoa_engines.penalty import (
    DEFAULT_CONSUMPTION_CEILING,
    DEFAULT_METER_MAX,
    DEFAULT_WARNING_THRESHOLD,
    PenaltyCalculator,
    consumption,
    water_charge,
)
from hoa_engines.tracer import traced_engine


@dataclass(frozen=True)
class MeteredCharge:
    consumption: int
    rollover: bool
    base_charge: int
    penalty: int
    months_overdue: int
    warnings: tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return self.base_charge + self.penalty


class MeteredBillingCalculator:
    """Charges for one metered billing period."""

    def __init__(
        self,
        rate_per_unit: int | Decimal,
        penalties: PenaltyCalculator,
        meter_max: int = DEFAULT_METER_MAX,
        consumption_ceiling: int = DEFAULT_CONSUMPTION_CEILING,
        warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
    ):
        self._rate_per_unit = rate_per_unit
        self._penalties = penalties
        self._meter_max = meter_max
        self._ceiling = consumption_ceiling
        self._warning_threshold = warning_threshold

    @traced_engine(
        "metered_billing", "1.0",
        fingerprint_fields=("current_reading", "previous_reading", "prior_unpaid", "as_of"),
    )
    def compute_charges(
        self,
        *,
        current_reading: int,
        previous_reading: int,
        prior_unpaid: int = 0,
        prior_due_date: date | None = None,
        as_of: date | None = None,
    ) -> MeteredCharge:
        """Base charge for the period plus the penalty on any prior unpaid balance.

        The penalty is only computed when ``prior_unpaid``, ``prior_due_date``
        and ``as_of`` are all supplied.
        """
        used = consumption(
            current_reading,
            previous_reading,
            meter_max=self._meter_max,
            ceiling=self._ceiling,
            warning_threshold=self._warning_threshold,
        )
        base = water_charge(used.consumption, self._rate_per_unit)

        penalty, months = 0, 0
        if prior_unpaid > 0 and prior_due_date is not None and as_of is not None:
            penalty, months = self._penalties.penalty_for(prior_unpaid, prior_due_date, as_of)

        return MeteredCharge(
            consumption=used.consumption,
            rollover=used.rollover,
            base_charge=base,
            penalty=penalty,
            months_overdue=months,
            warnings=used.warnings,
        )
