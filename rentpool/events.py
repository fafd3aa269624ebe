"""
events.py - Audit events

Events are just data: immutable records appended by the Enterprise after a
transaction commits, for off-ledger observers. The ledger's transaction log
remains the authoritative audit trail; events add the pool-level view
(fee breakdowns, totals, timing fields) that moves alone do not spell out.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .pricing_curve import LoanEstimate


# Event actions
LIQUIDITY_CHANGED = "liquidity_changed"
TOTALS_CHANGED = "totals_changed"
SERVICE_REGISTERED = "service_registered"
PAYMENT_TOKEN_CHANGED = "payment_token_changed"
LOAN_OPENED = "loan_opened"
LOAN_EXTENDED = "loan_extended"
LOAN_RETURNED = "loan_returned"
LOAN_TRANSFERRED = "loan_transferred"
POWER_TOKEN_WRAPPED = "power_token_wrapped"
CONFIG_UPDATED = "config_updated"
SHUTDOWN = "shutdown"

# Liquidity change kinds
LIQUIDITY_ADD = "add"
LIQUIDITY_INCREASE = "increase"
LIQUIDITY_DECREASE = "decrease"
LIQUIDITY_REMOVE = "remove"
LIQUIDITY_WITHDRAW_INTEREST = "withdraw_interest"


@dataclass(frozen=True, slots=True)
class AuditEvent:
    """
    Immutable record of a committed pool operation.

    Attributes:
        timestamp: Ledger time of the operation
        action: Event type string (LOAN_OPENED, SHUTDOWN, ...)
        symbol: Unit the event is about (pool, position, loan or service)
        params: Event-specific values as a frozen tuple of (key, value) pairs
    """
    timestamp: datetime
    action: str
    symbol: str = ""
    params: tuple = ()

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def __getitem__(self, key: str) -> Any:
        return self.params_dict[key]


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


def liquidity_changed_event(
    timestamp: datetime,
    position: str,
    kind: str,
    amount: int,
    total_shares: int,
    reserve: int,
    used_reserve: int,
) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=LIQUIDITY_CHANGED,
        symbol=position,
        params=(
            ("kind", kind),
            ("amount", amount),
            ("total_shares", total_shares),
            ("reserve", reserve),
            ("used_reserve", used_reserve),
        ),
    )


def totals_changed_event(timestamp: datetime, pool: str, total_shares: int, reserve: int) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=TOTALS_CHANGED,
        symbol=pool,
        params=(("total_shares", total_shares), ("reserve", reserve)),
    )


def service_registered_event(timestamp: datetime, service: str, index: int, base_asset: str) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=SERVICE_REGISTERED,
        symbol=service,
        params=(("index", index), ("base_asset", base_asset)),
    )


def payment_token_event(timestamp: datetime, pool: str, asset: str, index: int, enabled: bool) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=PAYMENT_TOKEN_CHANGED,
        symbol=pool,
        params=(("asset", asset), ("index", index), ("enabled", enabled)),
    )


def _fee_params(estimate: LoanEstimate) -> tuple:
    return (
        ("interest", estimate.interest),
        ("service_fee", estimate.service_fee),
        ("gc_fee", estimate.gc_fee),
    )


def loan_opened_event(
    timestamp: datetime,
    loan: str,
    borrower: str,
    service: str,
    amount: int,
    payment_asset: str,
    estimate: LoanEstimate,
    maturity_time: datetime,
) -> AuditEvent:
    """Loan opened, with the full fee breakdown in the payment asset."""
    return AuditEvent(
        timestamp=timestamp,
        action=LOAN_OPENED,
        symbol=loan,
        params=(
            ("borrower", borrower),
            ("service", service),
            ("amount", amount),
            ("payment_asset", payment_asset),
            *_fee_params(estimate),
            ("borrowing_time", _iso(timestamp)),
            ("maturity_time", _iso(maturity_time)),
        ),
    )


def loan_extended_event(
    timestamp: datetime,
    loan: str,
    payment_asset: str,
    estimate: LoanEstimate,
    old_maturity: datetime,
    new_maturity: datetime,
) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=LOAN_EXTENDED,
        symbol=loan,
        params=(
            ("payment_asset", payment_asset),
            *_fee_params(estimate),
            ("old_maturity_time", _iso(old_maturity)),
            ("maturity_time", _iso(new_maturity)),
        ),
    )


def loan_returned_event(timestamp: datetime, loan: str, closer: str, amount: int, gc_fee: int) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=LOAN_RETURNED,
        symbol=loan,
        params=(("closer", closer), ("amount", amount), ("gc_fee", gc_fee)),
    )


def loan_transferred_event(timestamp: datetime, loan: str, from_holder: str, to_holder: str) -> AuditEvent:
    return AuditEvent(
        timestamp=timestamp,
        action=LOAN_TRANSFERRED,
        symbol=loan,
        params=(("from", from_holder), ("to", to_holder)),
    )


def power_token_wrapped_event(timestamp: datetime, service: str, holder: str, amount: int) -> AuditEvent:
    """Positive amount for a wrap, negative for an unwrap."""
    return AuditEvent(
        timestamp=timestamp,
        action=POWER_TOKEN_WRAPPED,
        symbol=service,
        params=(("holder", holder), ("amount", amount)),
    )


def config_updated_event(timestamp: datetime, pool: str, fields: tuple) -> AuditEvent:
    return AuditEvent(timestamp=timestamp, action=CONFIG_UPDATED, symbol=pool, params=(("fields", fields),))


def shutdown_event(timestamp: datetime, pool: str, reserve: int) -> AuditEvent:
    return AuditEvent(timestamp=timestamp, action=SHUTDOWN, symbol=pool, params=(("reserve", reserve),))
