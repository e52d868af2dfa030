"""
Config -> Engine Bridges.

Functions that convert a LedgerConfig into configured engine instances.
These live in hoa_config because the engines must NEVER import hoa_config.

Usage:
    from hoa_config.bridges import build_distribution_engine

    config = get_active_config(...)
    engine = build_distribution_engine(config)
"""

from __future__ import annotations

from hoa_config.schema import LedgerConfig, resolve_timezone
from hoa_engines.allocation import AllocationBuilder
from hoa_engines.distribution import DistributionEngine, PartialPaymentPolicy
from hoa_engines.metered_billing import MeteredBillingCalculator
from hoa_engines.penalty import PenaltyCalculator
from hoa_kernel.domain.billing import BillingModule
from hoa_kernel.domain.clock import SystemClock
from hoa_kernel.domain.fiscal import FiscalCalendar


def build_clock(config: LedgerConfig) -> SystemClock:
    return SystemClock(resolve_timezone(config.timezone))


def build_fiscal_calendar(config: LedgerConfig) -> FiscalCalendar:
    return FiscalCalendar(config.fiscal_year_start_month)


def build_penalty_calculator(config: LedgerConfig) -> PenaltyCalculator:
    return PenaltyCalculator(
        penalty_rate=config.penalty.penalty_rate,
        grace_days=config.penalty.penalty_days,
    )


def build_distribution_engine(config: LedgerConfig) -> DistributionEngine:
    return DistributionEngine(
        penalty_calculator=build_penalty_calculator(config),
        partial_policy=PartialPaymentPolicy(config.partial_payment_policy),
    )


def build_allocation_builder(
    config: LedgerConfig,
    billing_module: BillingModule | str,
) -> AllocationBuilder:
    return AllocationBuilder(
        billing_module=billing_module,
        calendar=build_fiscal_calendar(config),
        tolerance=config.integrity_tolerance,
    )


def build_metered_calculator(config: LedgerConfig) -> MeteredBillingCalculator:
    """Metered billing calculator sharing the configured penalty terms."""
    meter = config.meter
    return MeteredBillingCalculator(
        rate_per_unit=meter.rate_per_unit,
        penalties=build_penalty_calculator(config),
        meter_max=meter.meter_max,
        consumption_ceiling=meter.consumption_ceiling,
        warning_threshold=meter.warning_threshold,
    )
