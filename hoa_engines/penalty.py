"""
hoa_engines.penalty -- Penalty and consumption calculator.

Responsibility:
    Pure, stateless arithmetic for metered billing and late penalties:
    meter deltas with rollover detection, compound monthly penalties,
    months/days late, credit application, and per-bill penalty
    recalculation as of an arbitrary date (backdated payments).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Never reads the wall
    clock; every date is a parameter.

Invariants enforced:
    - All money is integer minor units.  Rates are Decimal; the compound
      factor is computed once with Decimal and rounded once, so repeated
      calls with the same inputs are bit-identical.
    - A recalculated penalty is never lowered below what has already been
      paid toward it, so ``paid_amount <= total_amount`` keeps holding.

Failure modes:
    - InvalidInputError on negative readings, principals or months.
    - InconsistentReadingError when the rollover-adjusted consumption is
      negative or above the sanity ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal

from hoa_kernel.domain.billing import Bill
from hoa_kernel.domain.currency import round_half_up
from hoa_kernel.exceptions import InconsistentReadingError, InvalidInputError
from hoa_kernel.logging_config import get_logger

logger = get_logger("engines.penalty")

DEFAULT_METER_MAX = 10000
DEFAULT_CONSUMPTION_CEILING = 1000
DEFAULT_WARNING_THRESHOLD = 200

# Penalty changes within this many minor units are treated as rounding noise.
PENALTY_UPDATE_TOLERANCE = 1


def _as_rate(rate: Decimal | str | int | float) -> Decimal:
    value = Decimal(str(rate)) if isinstance(rate, float) else Decimal(rate)
    if not value.is_finite() or value < 0:
        raise InvalidInputError(f"Rate must be a non-negative number, got {rate!r}", value=rate)
    return value


# =============================================================================
# Consumption
# =============================================================================


@dataclass(frozen=True)
class ConsumptionResult:
    consumption: int
    rollover: bool = False
    warnings: tuple[str, ...] = ()

    @property
    def warning(self) -> str | None:
        return self.warnings[0] if self.warnings else None


def consumption(
    current: int,
    previous: int,
    meter_max: int = DEFAULT_METER_MAX,
    ceiling: int = DEFAULT_CONSUMPTION_CEILING,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> ConsumptionResult:
    """Meter delta between two readings.

    A current reading below the previous one is a meter rollover:
    ``(meter_max - previous) + current``.  Consumption above
    ``warning_threshold`` is flagged for human review, not rejected.
    """
    if current < 0 or previous < 0:
        raise InvalidInputError(
            f"Meter readings cannot be negative (current={current}, previous={previous})",
            value=(current, previous),
            field="reading",
        )

    warnings: list[str] = []
    rollover = current < previous
    if rollover:
        used = (meter_max - previous) + current
        warnings.append(
            f"Meter rollover detected: previous {previous}, current {current}, max {meter_max}"
        )
    else:
        used = current - previous

    if used < 0 or used > ceiling:
        logger.warning(
            "inconsistent_meter_reading",
            extra={"current": current, "previous": previous, "consumption": used},
        )
        raise InconsistentReadingError(current, previous, used)

    if used > warning_threshold:
        warnings.append(f"High consumption: {used} units exceeds {warning_threshold}")

    return ConsumptionResult(consumption=used, rollover=rollover, warnings=tuple(warnings))


def water_charge(consumption_units: int, rate_per_unit: int | Decimal) -> int:
    """Base charge in minor units for a consumption figure."""
    if consumption_units < 0:
        raise InvalidInputError(
            f"Consumption cannot be negative, got {consumption_units}",
            value=consumption_units,
            field="consumption",
        )
    return round_half_up(Decimal(consumption_units) * _as_rate(rate_per_unit))


# =============================================================================
# Penalties
# =============================================================================


@dataclass(frozen=True)
class CompoundPenaltyResult:
    penalty: int
    total_with_penalty: int
    effective_rate: Decimal


def compound_penalty(
    principal: int,
    monthly_rate: Decimal | str | float,
    months_late: int,
) -> CompoundPenaltyResult:
    """``total = round(principal * (1 + rate) ** months)``, ``penalty = total - principal``."""
    if principal < 0:
        raise InvalidInputError(
            f"Principal cannot be negative, got {principal}", value=principal, field="principal"
        )
    if months_late <= 0:
        return CompoundPenaltyResult(
            penalty=0, total_with_penalty=principal, effective_rate=Decimal("0")
        )

    factor = (Decimal(1) + _as_rate(monthly_rate)) ** months_late
    total = round_half_up(Decimal(principal) * factor)
    return CompoundPenaltyResult(
        penalty=total - principal,
        total_with_penalty=total,
        effective_rate=factor - 1,
    )


def months_late(due_date: date, as_of: date) -> int:
    """Whole calendar months elapsed since the due date.

    The same day-of-month one month later counts as one month.
    """
    months = (as_of.year - due_date.year) * 12 + (as_of.month - due_date.month)
    if as_of.day < due_date.day:
        months -= 1
    return max(0, months)


def days_late(due_date: date, as_of: date) -> int:
    return max(0, (as_of - due_date).days)


@dataclass(frozen=True)
class CreditApplication:
    amount_due: int
    credit_used: int
    credit_remaining: int


def apply_credit(amount_due: int, available_credit: int) -> CreditApplication:
    """Apply available credit against an amount due."""
    credit = max(0, available_credit)
    used = min(max(0, amount_due), credit)
    return CreditApplication(
        amount_due=amount_due - used,
        credit_used=used,
        credit_remaining=credit - used,
    )


# =============================================================================
# Per-bill recalculation
# =============================================================================


@dataclass(frozen=True)
class PenaltyRecalculation:
    """Outcome of recalculating one bill's penalty as of a date."""

    bill_id: str
    previous_penalty: int
    penalty_amount: int
    overdue_principal: int
    months_overdue: int
    updated: bool


class PenaltyCalculator:
    """
    Recalculates bill penalties as of a given date.

    Penalties compound monthly on the overdue base charge once the grace
    period (``grace_days`` after the due date) has passed; any time past
    grace counts as at least one month.  Recalculation always starts from
    zero, it never compounds on a previously stored penalty.
    """

    def __init__(self, penalty_rate: Decimal | str = Decimal("0.05"), grace_days: int = 10):
        rate = _as_rate(penalty_rate)
        if rate <= 0:
            raise ValueError(f"penalty_rate must be positive, got {penalty_rate}")
        if grace_days < 0:
            raise ValueError(f"grace_days cannot be negative, got {grace_days}")
        self.penalty_rate = rate
        self.grace_days = grace_days

    def grace_end(self, due_date: date) -> date:
        return due_date + timedelta(days=self.grace_days)

    def penalty_for(self, principal: int, due_date: date, as_of: date) -> tuple[int, int]:
        """(penalty, months_overdue) for a principal outstanding since due_date."""
        if principal <= 0 or as_of < self.grace_end(due_date):
            return 0, 0
        months = max(1, months_late(due_date, as_of))
        return compound_penalty(principal, self.penalty_rate, months).penalty, months

    def recalculate(
        self,
        bill: Bill,
        as_of: date,
        reset_payments: bool = False,
    ) -> PenaltyRecalculation:
        """Recalculate ``bill``'s penalty as of ``as_of``.

        With ``reset_payments`` the overdue principal is the full base
        charge, as if nothing had been paid yet (backdated recalculation).
        A bill whose base is already settled keeps its stored penalty.
        """
        principal = bill.base_charge if reset_payments else bill.unpaid_base
        if principal <= 0:
            return PenaltyRecalculation(
                bill_id=bill.bill_id,
                previous_penalty=bill.penalty_amount,
                penalty_amount=bill.penalty_amount,
                overdue_principal=0,
                months_overdue=0,
                updated=False,
            )

        expected, months = self.penalty_for(principal, bill.due_date, as_of)
        expected = max(expected, bill.penalty_paid)
        updated = abs(expected - bill.penalty_amount) > PENALTY_UPDATE_TOLERANCE

        if updated:
            logger.debug(
                "penalty_recalculated",
                extra={
                    "bill_id": bill.bill_id,
                    "unit_id": bill.unit_id,
                    "previous_penalty": bill.penalty_amount,
                    "penalty_amount": expected,
                    "months_overdue": months,
                    "as_of": as_of,
                },
            )

        return PenaltyRecalculation(
            bill_id=bill.bill_id,
            previous_penalty=bill.penalty_amount,
            penalty_amount=expected if updated else bill.penalty_amount,
            overdue_principal=principal,
            months_overdue=months,
            updated=updated,
        )

    def apply(self, bill: Bill, as_of: date, reset_payments: bool = False) -> Bill:
        """Return ``bill`` with its penalty recalculated as of ``as_of``."""
        result = self.recalculate(bill, as_of, reset_payments=reset_payments)
        if not result.updated:
            return bill
        return replace(bill, penalty_amount=result.penalty_amount, last_penalty_update=as_of)

    def recalculate_all(
        self,
        bills: list[Bill] | tuple[Bill, ...],
        as_of: date,
        reset_payments: bool = False,
    ) -> list[PenaltyRecalculation]:
        return [self.recalculate(b, as_of, reset_payments=reset_payments) for b in bills]
