"""
pricing_curve.py - Utilization-sensitive loan pricing

Let R be the reserve, U the used reserve and u(x) = (R - x) / R the free
fraction after x has been drawn. The curve factor

    f(u) = (1 - POLE) * SLOPE / (u - POLE) + (1 - SLOPE)

equals 1 on an idle pool (u = 1) and grows without bound as u approaches
POLE. With h(x) = x * f(u(x)), the interest for drawing `amount` on top of
U for `seconds` at `base_rate` (price per base unit per second) is

    interest = (h(U + amount) - h(U)) * base_rate * seconds

h is convex, so the marginal cost of each further unit rises with
utilization and the same loan costs strictly more on a busier pool.

Two implementations:
    calculate_interest()     exact, Decimal, floored to integer base units
    reference_loan_cost()    float/numpy, vectorised over used_reserve,
                             for analysis and for checking the exact path
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

import numpy as np

from .core import (
    BASIS_POINTS,
    ValidationError, InsufficientLiquidity, ErrorCode,
)
from .converter import Converter


Numeric = Union[float, np.ndarray]

# Curve shape, shared by every service
POLE = Decimal("0.05")
SLOPE = Decimal("0.3")


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def base_rate(tokens: int, period: timedelta, price: int) -> Decimal:
    """
    Base rate for "`price` per `tokens` per `period`".

    Example:
        3 tokens per 100 tokens per day, 18 decimals:
        base_rate(100 * 10**18, timedelta(days=1), 3 * 10**18)
    """
    seconds = int(period.total_seconds())
    if tokens <= 0 or seconds <= 0 or price < 0:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS,
                              f"invalid base rate inputs: tokens={tokens}, period={period}, price={price}")
    return Decimal(price) / (Decimal(tokens) * Decimal(seconds))


def duration_seconds(duration: timedelta) -> int:
    """Whole seconds of a loan duration."""
    return int(duration.total_seconds())


# ============================================================================
# CURVE
# ============================================================================

def curve_factor(free_fraction: Decimal) -> Decimal:
    """f(u): price multiplier for free fraction u (1 on an idle pool)."""
    return (1 - POLE) * SLOPE / (free_fraction - POLE) + (1 - SLOPE)


def utilization_integral(x: int, reserve: int) -> Decimal:
    """h(x) = x * f((R - x) / R)."""
    if x == 0:
        return Decimal(0)
    free_fraction = Decimal(reserve - x) / Decimal(reserve)
    return Decimal(x) * curve_factor(free_fraction)


def check_utilization(reserve: int, used_reserve: int, amount: int) -> None:
    """
    Raise unless `amount` can be drawn on top of `used_reserve`.

    Raises:
        ValidationError: amount not positive
        InsufficientLiquidity: amount above the available reserve, or the
            post-draw free fraction at or below the curve's pole
    """
    if amount <= 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, f"amount must be positive, got {amount}")
    if reserve <= 0 or used_reserve + amount > reserve:
        raise InsufficientLiquidity(
            ErrorCode.INSUFFICIENT_AVAILABLE_RESERVE,
            f"amount {amount} exceeds available reserve {max(0, reserve - used_reserve)}",
        )
    if Decimal(reserve - used_reserve - amount) / Decimal(reserve) <= POLE:
        raise InsufficientLiquidity(
            ErrorCode.UTILIZATION_CEILING,
            f"drawing {amount} would leave no more than {POLE:%} of reserve {reserve} free",
        )


def calculate_interest(
    rate: Decimal,
    reserve: int,
    used_reserve: int,
    amount: int,
    seconds: int,
) -> int:
    """
    Interest, in base asset units, for drawing `amount` for `seconds`.

    Floored to an integer.
    """
    check_utilization(reserve, used_reserve, amount)
    with localcontext() as ctx:
        ctx.prec = 60
        delta = utilization_integral(used_reserve + amount, reserve) - utilization_integral(used_reserve, reserve)
        value = delta * rate * Decimal(seconds)
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def reference_loan_cost(
    base_price: float,
    reserve: float,
    used_reserve: Numeric,
    amount: float,
    duration: float,
    pole: float = float(POLE),
    slope: float = float(SLOPE),
) -> Numeric:
    """
    Float reference of the curve, vectorised over `used_reserve`.

    Example:
        used = np.linspace(0, 800, 9)
        costs = reference_loan_cost(0.03 / 86400, 1000, used, 100, 86400)
    """
    used = np.asarray(used_reserve, dtype=float)

    def f(u):
        return (1.0 - pole) * slope / (u - pole) + (1.0 - slope)

    def h(x):
        return x * f((reserve - x) / reserve)

    cost = (h(used + amount) - h(used)) * base_price * duration
    if np.ndim(cost) == 0:
        return float(cost)
    return cost


# ============================================================================
# LOAN ESTIMATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanEstimate:
    """
    Cost breakdown of a loan, all in payment asset units.

    interest and service_fee partition the curve cost; only the gc fee is
    charged on top of it.

    Attributes:
        interest: Pool interest component
        service_fee: Protocol fee component, carved out of the curve cost
        gc_fee: Deposit paid out to whoever closes the loan
        interest_base: Curve cost in the service's base asset, before conversion
    """
    interest: int
    service_fee: int
    gc_fee: int
    interest_base: int = 0

    @property
    def cost(self) -> int:
        return self.interest + self.service_fee

    @property
    def total(self) -> int:
        return self.cost + self.gc_fee


def calculate_loan_estimate(
    rate: Decimal,
    base_asset: str,
    service_fee_percent: int,
    min_gc_fee: int,
    reserve: int,
    used_reserve: int,
    amount: int,
    seconds: int,
    pool_asset: str,
    payment_asset: str,
    converter: Converter,
    gc_fee_percent: int = 0,
    charge_gc_fee: bool = True,
) -> LoanEstimate:
    """
    Price a loan in the payment asset.

    The curve cost is computed in the service's base asset and converted to
    the payment asset; the service fee is service_fee_percent of that cost
    and the pool keeps the rest. The gc fee is
    max(cost_in_pool_asset * gc_fee_percent / 10000, min_gc_fee) in pool
    asset units.
    """
    interest_base = calculate_interest(rate, reserve, used_reserve, amount, seconds)
    cost = converter.estimate_convert(base_asset, interest_base, payment_asset)
    service_fee = cost * service_fee_percent // BASIS_POINTS

    gc_fee = 0
    if charge_gc_fee:
        cost_pool = converter.estimate_convert(base_asset, interest_base, pool_asset)
        gc_fee_pool = max(cost_pool * gc_fee_percent // BASIS_POINTS, min_gc_fee)
        gc_fee = converter.estimate_convert(pool_asset, gc_fee_pool, payment_asset)

    return LoanEstimate(
        interest=cost - service_fee,
        service_fee=service_fee,
        gc_fee=gc_fee,
        interest_base=interest_base,
    )
