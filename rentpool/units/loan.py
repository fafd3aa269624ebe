"""
loan.py - Loan Receipt Unit and Loan Lifecycle

=== LIFECYCLE ===

A loan is a LOAN_<pool>_<id> receipt unit (max balance 1). The holder of
the receipt is the borrower. Borrowing mints the receipt together with
`amount` power tokens bound to it; returning burns both.

    borrow    -> ACTIVE
    reborrow  -> ACTIVE    (maturity and grace deadlines extended)
    return    -> RETURNED  (amount = 0, receipt burned)

=== RETURN LADDER ===

    now < borrower_grace_deadline    only the holder may return
    now < collector_grace_deadline   the holder or the collector
    otherwise                        anyone, who collects the gc fee

    borrower_grace_deadline  = maturity + borrower_loan_return_grace_period
    collector_grace_deadline = maturity + enterprise_loan_collect_grace_period

=== TRANSFER RULE ===

Minting and burning the receipt are always allowed. A transfer between
two holders is allowed only before maturity, so an expired loan stays
with its borrower until returned.

=== PURE FUNCTIONS ===

    load_loan(view, config, symbol) -> LoanInfo
    loan_phase(loan, now) -> str
    check_return_authorization(loan, holder, caller, collector, now)
    calculate_borrow_estimate(view, config, ...) -> LoanEstimate
    compute_borrow / compute_reborrow / compute_return_loan / compute_transfer_loan
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, TransferRuleViolation, UnitNotRegistered,
    ValidationError, Unauthorized, InvalidState, SlippageExceeded, ErrorCode,
    build_transaction, _freeze_state,
    SYSTEM_WALLET, UNIT_TYPE_LOAN_RECEIPT,
)
from ..config import EnterpriseConfig
from ..pricing_curve import LoanEstimate, calculate_loan_estimate, duration_seconds
from ..reserve_stream import calculate_reserve, increase_streaming_target
from ..settlement import calculate_settlement, settlement_moves
from .pool import (
    PoolState, load_pool, pool_symbol, loan_symbol, pool_state_change,
    require_active, require_payment_token,
)
from .service import Service, require_service, service_state_change, bind
from .liquidity import owner_of


# Loan phases (strings, not enum)
LOAN_PHASE_BORROWER_GRACE = "borrower_grace"
LOAN_PHASE_COLLECTOR_GRACE = "collector_grace"
LOAN_PHASE_PUBLIC = "public"
LOAN_PHASE_RETURNED = "returned"


@dataclass(frozen=True, slots=True)
class LoanInfo:
    """Typed snapshot of a loan record."""
    symbol: str
    pool: str
    loan_id: int
    amount: int
    service: str
    service_index: int
    borrowing_time: datetime
    maturity_time: datetime
    borrower_grace_deadline: datetime
    collector_grace_deadline: datetime
    gc_fee: int
    payment_token: str
    payment_token_index: int

    @property
    def is_active(self) -> bool:
        return self.amount > 0


def to_state_dict(loan: LoanInfo) -> Dict[str, Any]:
    return {
        'pool': loan.pool,
        'loan_id': loan.loan_id,
        'amount': loan.amount,
        'service': loan.service,
        'service_index': loan.service_index,
        'borrowing_time': loan.borrowing_time,
        'maturity_time': loan.maturity_time,
        'borrower_grace_deadline': loan.borrower_grace_deadline,
        'collector_grace_deadline': loan.collector_grace_deadline,
        'gc_fee': loan.gc_fee,
        'payment_token': loan.payment_token,
        'payment_token_index': loan.payment_token_index,
    }


def loan_receipt_transfer_rule(view: LedgerView, move: Move) -> None:
    """Peer transfers of a loan receipt are refused once the loan has matured."""
    if move.source == SYSTEM_WALLET or move.dest == SYSTEM_WALLET:
        return
    state = view.get_unit_state(move.unit_symbol)
    if not view.current_time < state['maturity_time']:
        raise TransferRuleViolation(
            f"{move.unit_symbol} matured at {state['maturity_time']} and can no longer be transferred"
        )


def create_loan_unit(loan: LoanInfo) -> Unit:
    return Unit(
        symbol=loan.symbol,
        name=f"Loan {loan.loan_id} of {loan.amount} {loan.service}",
        unit_type=UNIT_TYPE_LOAN_RECEIPT,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=loan_receipt_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(loan)),
    )


def load_loan(view: LedgerView, config: EnterpriseConfig, symbol: str) -> LoanInfo:
    """
    Load an active loan of this enterprise.

    Raises:
        InvalidState: unknown symbol, another pool's loan, or already returned
    """
    try:
        unit = view.get_unit(symbol)
    except UnitNotRegistered:
        raise InvalidState(ErrorCode.LOAN_NOT_FOUND, f"loan {symbol} does not exist") from None
    if unit.unit_type != UNIT_TYPE_LOAN_RECEIPT:
        raise InvalidState(ErrorCode.LOAN_NOT_FOUND, f"{symbol} is not a loan")
    raw = view.get_unit_state(symbol)
    loan = LoanInfo(
        symbol=symbol,
        pool=raw['pool'],
        loan_id=int(raw['loan_id']),
        amount=int(raw.get('amount', 0)),
        service=raw['service'],
        service_index=int(raw['service_index']),
        borrowing_time=raw['borrowing_time'],
        maturity_time=raw['maturity_time'],
        borrower_grace_deadline=raw['borrower_grace_deadline'],
        collector_grace_deadline=raw['collector_grace_deadline'],
        gc_fee=int(raw.get('gc_fee', 0)),
        payment_token=raw['payment_token'],
        payment_token_index=int(raw['payment_token_index']),
    )
    if loan.pool != config.name or not loan.is_active:
        raise InvalidState(ErrorCode.LOAN_NOT_FOUND, f"loan {symbol} is not active in {config.name}")
    return loan


def _loan_change(view: LedgerView, loan: LoanInfo) -> UnitStateChange:
    return UnitStateChange(
        unit=loan.symbol,
        old_state=view.get_unit_state(loan.symbol),
        new_state=to_state_dict(loan),
    )


# =============================================================================
# RETURN LADDER
# =============================================================================

def loan_phase(loan: LoanInfo, now: datetime) -> str:
    """Which tier of the return ladder applies at `now`."""
    if not loan.is_active:
        return LOAN_PHASE_RETURNED
    if now < loan.borrower_grace_deadline:
        return LOAN_PHASE_BORROWER_GRACE
    if now < loan.collector_grace_deadline:
        return LOAN_PHASE_COLLECTOR_GRACE
    return LOAN_PHASE_PUBLIC


def check_return_authorization(
    loan: LoanInfo,
    holder: Optional[str],
    caller: str,
    collector: str,
    now: datetime,
) -> None:
    """
    Raise unless `caller` may return `loan` at `now`.

    Raises:
        Unauthorized: BORROWER_GRACE_PERIOD or COLLECTOR_GRACE_PERIOD
    """
    phase = loan_phase(loan, now)
    if phase == LOAN_PHASE_BORROWER_GRACE and caller != holder:
        raise Unauthorized(ErrorCode.BORROWER_GRACE_PERIOD,
                           f"only the borrower can return {loan.symbol} before {loan.borrower_grace_deadline}")
    if phase == LOAN_PHASE_COLLECTOR_GRACE and caller not in (holder, collector):
        raise Unauthorized(ErrorCode.COLLECTOR_GRACE_PERIOD,
                           f"only the borrower or collector can return {loan.symbol} before {loan.collector_grace_deadline}")


def _deadlines(config: EnterpriseConfig, maturity: datetime) -> Dict[str, datetime]:
    return {
        'maturity_time': maturity,
        'borrower_grace_deadline': maturity + config.borrower_loan_return_grace_period,
        'collector_grace_deadline': maturity + config.enterprise_loan_collect_grace_period,
    }


# =============================================================================
# PRICING
# =============================================================================

def _require_duration(service: Service, duration: timedelta) -> None:
    if not service.min_loan_duration <= duration <= service.max_loan_duration:
        raise ValidationError(
            ErrorCode.INVALID_LOAN_DURATION,
            f"duration {duration} outside [{service.min_loan_duration}, {service.max_loan_duration}] for {service.symbol}",
        )


def _estimate(
    config: EnterpriseConfig,
    service: Service,
    payment_asset: str,
    reserve: int,
    used_reserve: int,
    amount: int,
    duration: timedelta,
    charge_gc_fee: bool = True,
) -> LoanEstimate:
    return calculate_loan_estimate(
        rate=service.base_rate,
        base_asset=service.base_asset,
        service_fee_percent=service.service_fee_percent,
        min_gc_fee=service.min_gc_fee,
        reserve=reserve,
        used_reserve=used_reserve,
        amount=amount,
        seconds=duration_seconds(duration),
        pool_asset=config.pool_asset,
        payment_asset=payment_asset,
        converter=config.converter,
        gc_fee_percent=config.gc_fee_percent,
        charge_gc_fee=charge_gc_fee,
    )


def calculate_borrow_estimate(
    view: LedgerView,
    config: EnterpriseConfig,
    service_symbol: str,
    payment_asset: str,
    amount: int,
    duration: timedelta,
) -> LoanEstimate:
    """
    Price a new loan at the view's current time without committing anything.

    Raises the same validation, state and liquidity errors as compute_borrow.
    """
    pool = load_pool(view, pool_symbol(config.name))
    service = require_service(view, config, service_symbol)
    require_payment_token(pool, payment_asset)
    _require_duration(service, duration)
    reserve = calculate_reserve(pool.reserve_state, view.current_time, config.schedule)
    return _estimate(config, service, payment_asset, reserve, pool.used_reserve, amount, duration)


def calculate_reborrow_estimate(
    view: LedgerView,
    config: EnterpriseConfig,
    loan: LoanInfo,
    service: Service,
    payment_asset: str,
    duration: timedelta,
) -> LoanEstimate:
    """Price extending `loan` by `duration`, as if it were returned and borrowed again."""
    pool = load_pool(view, pool_symbol(config.name))
    reserve = calculate_reserve(pool.reserve_state, view.current_time, config.schedule)
    return _estimate(config, service, payment_asset, reserve, pool.used_reserve - loan.amount,
                     loan.amount, duration, charge_gc_fee=False)


def _require_max_payment(estimate: LoanEstimate, max_payment: int) -> None:
    if estimate.total > max_payment:
        raise SlippageExceeded(ErrorCode.PAYMENT_EXCEEDS_MAXIMUM,
                               f"payment {estimate.total} exceeds maximum {max_payment}")


def _collect(
    view: LedgerView,
    config: EnterpriseConfig,
    pool: PoolState,
    estimate: LoanEstimate,
    payer: str,
    payment_asset: str,
    contract_id: str,
) -> Tuple[List[Move], PoolState]:
    """Settlement moves and the pool with earned interest queued for streaming."""
    settlement = calculate_settlement(estimate, payment_asset, config)
    moves = settlement_moves(settlement, payer, config, contract_id)
    state = increase_streaming_target(
        pool.reserve_state, settlement.pool_interest, view.current_time, config.schedule,
    )
    return moves, pool.with_reserve(state)


# =============================================================================
# BORROW
# =============================================================================

def compute_borrow(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    service_symbol: str,
    payment_asset: str,
    amount: int,
    duration: timedelta,
    max_payment: int,
) -> PendingTransaction:
    """
    Open a loan of `amount` power tokens for `duration`.

    The caller pays interest, service fee and gc fee in `payment_asset`,
    receives the power tokens and the loan receipt.

    Raises:
        InvalidState: shut down, unknown service, disabled payment token
        ValidationError: unknown payment token, bad amount or duration
        InsufficientLiquidity: amount above available reserve or utilization ceiling
        SlippageExceeded: total payment above `max_payment`
    """
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)
    service = require_service(view, config, service_symbol)
    token_index = require_payment_token(pool, payment_asset)
    _require_duration(service, duration)

    now = view.current_time
    reserve = calculate_reserve(pool.reserve_state, now, config.schedule)
    estimate = _estimate(config, service, payment_asset, reserve, pool.used_reserve, amount, duration)
    _require_max_payment(estimate, max_payment)

    loan = LoanInfo(
        symbol=loan_symbol(config.name, pool.next_loan_id),
        pool=config.name,
        loan_id=pool.next_loan_id,
        amount=amount,
        service=service.symbol,
        service_index=service.index,
        borrowing_time=now,
        gc_fee=estimate.gc_fee,
        payment_token=payment_asset,
        payment_token_index=token_index,
        **_deadlines(config, now + duration),
    )

    contract_id = f"borrow_{loan.symbol}"
    moves, new_pool = _collect(view, config, pool, estimate, caller, payment_asset, contract_id)
    new_pool = replace(
        new_pool,
        used_reserve=new_pool.used_reserve + amount,
        next_loan_id=pool.next_loan_id + 1,
    )
    moves.append(Move(amount, service.symbol, SYSTEM_WALLET, caller, contract_id,
                      metadata={'bound_loan': loan.symbol}))
    moves.append(Move(1, loan.symbol, SYSTEM_WALLET, caller, contract_id))

    return build_transaction(
        view, moves,
        [pool_state_change(view, new_pool), service_state_change(view, bind(service, caller, amount))],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, loan.symbol, "BORROW"),
        units_to_create=(create_loan_unit(loan),),
    )


def compute_reborrow(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    payment_asset: str,
    duration: timedelta,
    max_payment: int,
) -> PendingTransaction:
    """
    Extend an active loan by `duration`.

    Priced as if the loan were returned and borrowed again at the current
    utilization. The gc fee was paid at borrow time and is not charged again.

    Raises:
        InvalidState: unknown loan, shut down, disabled payment token
        ValidationError: duration out of bounds or new maturity in the past
        Unauthorized: caller does not hold the loan receipt
        SlippageExceeded: payment above `max_payment`
    """
    loan = load_loan(view, config, symbol)
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)
    service = require_service(view, config, loan.service)
    require_payment_token(pool, payment_asset)
    _require_duration(service, duration)

    now = view.current_time
    new_maturity = loan.maturity_time + duration
    if new_maturity < now:
        raise ValidationError(ErrorCode.LOAN_MATURITY_IN_PAST,
                              f"extended maturity {new_maturity} of {symbol} is before {now}")
    if owner_of(view, symbol) != caller:
        raise Unauthorized(ErrorCode.CALLER_NOT_BORROWER, f"{caller} does not hold {symbol}")

    estimate = calculate_reborrow_estimate(view, config, loan, service, payment_asset, duration)
    _require_max_payment(estimate, max_payment)

    moves, new_pool = _collect(view, config, pool, estimate, caller, payment_asset, f"reborrow_{symbol}")
    new_loan = replace(loan, **_deadlines(config, new_maturity))
    return build_transaction(
        view, moves,
        [pool_state_change(view, new_pool), _loan_change(view, new_loan)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "REBORROW"),
    )


# =============================================================================
# RETURN / TRANSFER
# =============================================================================

def compute_return_loan(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
) -> PendingTransaction:
    """
    Close a loan: burn its receipt and bound power tokens, release the used
    reserve and pay the gc fee to `caller`.

    After shutdown the used reserve is already zero and is left untouched.
    """
    loan = load_loan(view, config, symbol)
    holder = owner_of(view, symbol)
    if holder is None:
        raise InvalidState(ErrorCode.LOAN_NOT_FOUND, f"loan {symbol} has no holder")
    now = view.current_time
    check_return_authorization(loan, holder, caller, config.collector, now)

    pool = load_pool(view, pool_symbol(config.name))
    if not pool.shutdown:
        pool = replace(pool, used_reserve=pool.used_reserve - loan.amount)
    service = require_service(view, config, loan.service)

    contract_id = f"return_{symbol}"
    moves: List[Move] = [
        Move(loan.amount, loan.service, holder, SYSTEM_WALLET, contract_id,
             metadata={'bound_loan': symbol}),
        Move(1, symbol, holder, SYSTEM_WALLET, contract_id),
    ]
    if loan.gc_fee > 0:
        moves.append(Move(loan.gc_fee, loan.payment_token, config.pool_wallet, caller, contract_id))

    return build_transaction(
        view, moves,
        [
            pool_state_change(view, pool),
            service_state_change(view, bind(service, holder, -loan.amount)),
            _loan_change(view, replace(loan, amount=0)),
        ],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "RETURN_LOAN"),
    )


def compute_transfer_loan(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    new_holder: str,
) -> PendingTransaction:
    """
    Move a loan receipt and its bound power tokens to `new_holder`.

    Refused by the receipt's transfer rule once the loan has matured.
    """
    loan = load_loan(view, config, symbol)
    if owner_of(view, symbol) != caller:
        raise Unauthorized(ErrorCode.CALLER_NOT_BORROWER, f"{caller} does not hold {symbol}")
    if not new_holder or new_holder in (caller, SYSTEM_WALLET):
        raise ValidationError(ErrorCode.INVALID_IDENTITY, f"cannot transfer {symbol} to {new_holder!r}")

    pool = load_pool(view, pool_symbol(config.name))
    service = require_service(view, config, loan.service)
    service = bind(bind(service, caller, -loan.amount), new_holder, loan.amount)

    contract_id = f"transfer_{symbol}"
    moves = [
        Move(1, symbol, caller, new_holder, contract_id),
        Move(loan.amount, loan.service, caller, new_holder, contract_id,
             metadata={'bound_loan': symbol}),
    ]
    return build_transaction(
        view, moves,
        [pool_state_change(view, pool), service_state_change(view, service)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "TRANSFER_LOAN"),
    )
