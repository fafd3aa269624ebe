"""
liquidity.py - Liquidity Positions and Share Accounting

=== SHARE MODEL ===

Liquidity providers deposit the pool asset and receive shares, a
proportional claim on the reserve:

    new_shares(amount)    = amount                      (empty pool)
                          = T * amount // R             (otherwise)
    liquidity_of(shares)  = R * shares // T

where R is the reserve at the time of the operation and T the total share
count. Every division floors, so rounding never favours the depositor.

Each position is an INTEREST_<pool>_<id> receipt unit (max balance 1).
Its holder owns the position; its state holds:

    principal    amount deposited, net of decreases
    shares       claim on the reserve
    created_at   time of the last deposit (flash-removal guard)

Interest is the part of a position's value above its principal. It is
cashed out by withdraw_interest(), which keeps the principal and shrinks
the share count.

=== INVARIANTS ===

    total_shares == 0  <=>  reserve == 0
    A sole holder never leaves shares behind without reserve: whatever is
    still streaming vests before its last shares are priced.
    A position cannot be decreased or removed at the time it was funded.

=== PURE FUNCTIONS ===

    shares_for_deposit(amount, reserve, total_shares) -> int
    liquidity_of(shares, reserve, total_shares) -> int
    calculate_accrued_interest(position, reserve, total_shares) -> int
    compute_add_liquidity / compute_increase_liquidity
    compute_decrease_liquidity / compute_remove_liquidity
    compute_withdraw_interest / compute_transfer_position
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    ValidationError, InsufficientLiquidity, Unauthorized, InvalidState, ErrorCode,
    UnitNotRegistered, build_transaction, empty_pending_transaction, _freeze_state,
    SYSTEM_WALLET, UNIT_TYPE_INTEREST_RECEIPT,
)
from ..config import EnterpriseConfig
from ..reserve_stream import (
    ReserveState, calculate_reserve, calculate_available_reserve,
    vest_all, withdraw_from_reserve,
)
from .pool import (
    PoolState, load_pool, pool_symbol, position_symbol, pool_state_change, require_active,
)


# =============================================================================
# SHARE MATH
# =============================================================================

def shares_for_deposit(amount: int, reserve: int, total_shares: int) -> int:
    """
    Shares minted for depositing `amount`.

    Example:
        shares_for_deposit(1000, 0, 0)       -> 1000   (bootstrap 1:1)
        shares_for_deposit(500, 1100, 1000)  -> 454
    """
    if total_shares == 0 or reserve == 0:
        return amount
    return total_shares * amount // reserve


def liquidity_of(shares: int, reserve: int, total_shares: int) -> int:
    """Reserve claimed by `shares`, floored."""
    if total_shares == 0:
        return 0
    return reserve * shares // total_shares


def shares_to_burn(amount: int, reserve: int, total_shares: int, position_shares: int) -> int:
    """Shares given up to withdraw `amount`, rounded up and capped at the position."""
    if reserve == 0:
        return position_shares
    return min(-(-total_shares * amount // reserve), position_shares)


# =============================================================================
# POSITION STATE
# =============================================================================

@dataclass(frozen=True, slots=True)
class LiquidityInfo:
    """Typed snapshot of a liquidity position."""
    symbol: str
    pool: str
    position_id: int
    principal: int
    shares: int
    created_at: datetime

    @property
    def is_open(self) -> bool:
        return self.shares > 0 or self.principal > 0


def to_state_dict(position: LiquidityInfo) -> Dict[str, Any]:
    return {
        'pool': position.pool,
        'position_id': position.position_id,
        'principal': position.principal,
        'shares': position.shares,
        'created_at': position.created_at,
    }


def create_position_unit(position: LiquidityInfo) -> Unit:
    """Receipt unit for a new position. Freely transferable, at most one per holder."""
    return Unit(
        symbol=position.symbol,
        name=f"Liquidity position {position.position_id} in {position.pool}",
        unit_type=UNIT_TYPE_INTEREST_RECEIPT,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(position)),
    )


def owner_of(view: LedgerView, symbol: str) -> Optional[str]:
    """Holder of a receipt unit, or None once it has been burned."""
    for wallet, quantity in view.get_positions(symbol).items():
        if wallet != SYSTEM_WALLET and quantity > 0:
            return wallet
    return None


def load_position(view: LedgerView, config: EnterpriseConfig, symbol: str) -> LiquidityInfo:
    """
    Load an open position of this enterprise.

    Raises:
        InvalidState: unknown symbol, another pool's position, or already removed
    """
    try:
        unit = view.get_unit(symbol)
    except UnitNotRegistered:
        raise InvalidState(ErrorCode.POSITION_NOT_FOUND, f"position {symbol} does not exist") from None
    if unit.unit_type != UNIT_TYPE_INTEREST_RECEIPT:
        raise InvalidState(ErrorCode.POSITION_NOT_FOUND, f"{symbol} is not a liquidity position")
    raw = view.get_unit_state(symbol)
    position = LiquidityInfo(
        symbol=symbol,
        pool=raw['pool'],
        position_id=int(raw['position_id']),
        principal=int(raw.get('principal', 0)),
        shares=int(raw.get('shares', 0)),
        created_at=raw['created_at'],
    )
    if position.pool != config.name or not position.is_open:
        raise InvalidState(ErrorCode.POSITION_NOT_FOUND, f"position {symbol} is not open in {config.name}")
    return position


def _position_change(view: LedgerView, position: LiquidityInfo) -> UnitStateChange:
    return UnitStateChange(
        unit=position.symbol,
        old_state=view.get_unit_state(position.symbol),
        new_state=to_state_dict(position),
    )


def _owned_position(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
) -> LiquidityInfo:
    position = load_position(view, config, symbol)
    if owner_of(view, symbol) != caller:
        raise Unauthorized(ErrorCode.CALLER_NOT_OWNER, f"{caller} does not hold {symbol}")
    return position


def _origin(caller: str, symbol: str, event: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.USER_ACTION, caller, symbol, event)


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, f"amount must be positive, got {amount}")


def _require_settled(position: LiquidityInfo, now: datetime) -> None:
    if not position.created_at < now:
        raise InvalidState(ErrorCode.FLASH_LIQUIDITY_REMOVAL,
                           f"{position.symbol} was funded at {position.created_at} and cannot be withdrawn at the same time")


def _require_available(reserve: ReserveState, amount: int, now: datetime, config: EnterpriseConfig) -> None:
    available = calculate_available_reserve(reserve, now, config.schedule)
    if amount > available:
        raise InsufficientLiquidity(ErrorCode.INSUFFICIENT_AVAILABLE_RESERVE,
                                    f"{amount} exceeds available reserve {available}")


# =============================================================================
# ACCRUED INTEREST
# =============================================================================

def calculate_accrued_interest(position: LiquidityInfo, reserve: int, total_shares: int) -> int:
    """Value of the position above its principal (never negative)."""
    return max(0, liquidity_of(position.shares, reserve, total_shares) - position.principal)


def get_accrued_interest(view: LedgerView, config: EnterpriseConfig, symbol: str) -> int:
    """Accrued interest of a position at the view's current time."""
    position = load_position(view, config, symbol)
    pool = load_pool(view, pool_symbol(config.name))
    reserve = calculate_reserve(pool.reserve_state, view.current_time, config.schedule)
    return calculate_accrued_interest(position, reserve, pool.total_shares)


# =============================================================================
# DEPOSITS
# =============================================================================

def _deposit(pool: PoolState, amount: int, now: datetime, config: EnterpriseConfig) -> Tuple[PoolState, int]:
    reserve = calculate_reserve(pool.reserve_state, now, config.schedule)
    if reserve == 0 and pool.total_shares > 0:
        # Outstanding shares own whatever is still streaming
        pool = pool.with_reserve(vest_all(pool.reserve_state, now))
        reserve = pool.fixed_reserve
    new_shares = shares_for_deposit(amount, reserve, pool.total_shares)
    if new_shares <= 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT,
                              f"deposit of {amount} is worth less than one share")
    new_pool = replace(
        pool,
        fixed_reserve=pool.fixed_reserve + amount,
        total_shares=pool.total_shares + new_shares,
    )
    return new_pool, new_shares


def compute_add_liquidity(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    amount: int,
) -> PendingTransaction:
    """
    Open a new position funded with `amount` of the pool asset.

    The position receipt is minted to `caller`.

    Raises:
        InvalidState: enterprise shut down
        ValidationError: non-positive amount, or too small to mint a share
    """
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)
    _require_positive(amount)
    now = view.current_time

    new_pool, new_shares = _deposit(pool, amount, now, config)
    position = LiquidityInfo(
        symbol=position_symbol(config.name, pool.next_position_id),
        pool=config.name,
        position_id=pool.next_position_id,
        principal=amount,
        shares=new_shares,
        created_at=now,
    )
    new_pool = replace(new_pool, next_position_id=pool.next_position_id + 1)

    contract_id = f"add_liquidity_{position.symbol}"
    moves = [
        Move(amount, config.pool_asset, caller, config.pool_wallet, contract_id),
        Move(1, position.symbol, SYSTEM_WALLET, caller, contract_id),
    ]
    return build_transaction(
        view, moves, [pool_state_change(view, new_pool)],
        origin=_origin(caller, position.symbol, "ADD_LIQUIDITY"),
        units_to_create=(create_position_unit(position),),
    )


def compute_increase_liquidity(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    amount: int,
) -> PendingTransaction:
    """
    Add `amount` to an existing position.

    Resets the position's created_at, so it cannot be withdrawn at this time.
    """
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)
    _require_positive(amount)
    position = _owned_position(view, config, caller, symbol)
    now = view.current_time

    new_pool, new_shares = _deposit(pool, amount, now, config)
    new_position = replace(
        position,
        principal=position.principal + amount,
        shares=position.shares + new_shares,
        created_at=now,
    )
    moves = [Move(amount, config.pool_asset, caller, config.pool_wallet, f"increase_liquidity_{symbol}")]
    return build_transaction(
        view, moves,
        [pool_state_change(view, new_pool), _position_change(view, new_position)],
        origin=_origin(caller, symbol, "INCREASE_LIQUIDITY"),
    )


# =============================================================================
# WITHDRAWALS
# =============================================================================

def _payout(amount: int, config: EnterpriseConfig, owner: str, contract_id: str) -> List[Move]:
    if amount <= 0:
        return []
    return [Move(amount, config.pool_asset, config.pool_wallet, owner, contract_id)]


def compute_decrease_liquidity(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    amount: int,
) -> PendingTransaction:
    """
    Withdraw `amount` of principal from a position.

    Shares burned are rounded up. If that would retire every share of the
    pool, interest still streaming vests first, and one share is kept while
    reserve remains to carry it.

    Raises:
        ValidationError: non-positive amount
        Unauthorized: caller does not hold the position
        InvalidState: position funded at the current time
        InsufficientLiquidity: amount above principal or above available reserve
    """
    _require_positive(amount)
    position = _owned_position(view, config, caller, symbol)
    pool = load_pool(view, pool_symbol(config.name))
    now = view.current_time

    if amount > position.principal:
        raise InsufficientLiquidity(ErrorCode.EXCEEDS_PRINCIPAL,
                                    f"{amount} exceeds principal {position.principal} of {symbol}")
    _require_settled(position, now)
    state = pool.reserve_state
    _require_available(state, amount, now, config)

    reserve = calculate_reserve(state, now, config.schedule)
    burn = shares_to_burn(amount, reserve, pool.total_shares, position.shares)
    if burn >= pool.total_shares:
        # Sole holder: the stream is theirs, and the share kept must carry it
        state = vest_all(state, now)
        if state.fixed_reserve > amount:
            burn = pool.total_shares - 1

    state = withdraw_from_reserve(state, amount, now, config.schedule)
    state = replace(state, total_shares=state.total_shares - burn)
    new_position = replace(position, principal=position.principal - amount, shares=position.shares - burn)

    return build_transaction(
        view, _payout(amount, config, caller, f"decrease_liquidity_{symbol}"),
        [pool_state_change(view, pool.with_reserve(state)), _position_change(view, new_position)],
        origin=_origin(caller, symbol, "DECREASE_LIQUIDITY"),
    )


def compute_remove_liquidity(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
) -> PendingTransaction:
    """
    Close a position: pay out its full value and burn the receipt.

    The last position of the pool takes the whole reserve, including
    interest still streaming.
    """
    position = _owned_position(view, config, caller, symbol)
    pool = load_pool(view, pool_symbol(config.name))
    now = view.current_time
    _require_settled(position, now)

    state = pool.reserve_state
    if position.shares >= pool.total_shares:
        state = vest_all(state, now)
        liquidity = state.fixed_reserve
    else:
        reserve = calculate_reserve(state, now, config.schedule)
        liquidity = liquidity_of(position.shares, reserve, pool.total_shares)
    _require_available(state, liquidity, now, config)

    state = withdraw_from_reserve(state, liquidity, now, config.schedule)
    state = replace(state, total_shares=state.total_shares - position.shares)
    closed = replace(position, principal=0, shares=0)

    contract_id = f"remove_liquidity_{symbol}"
    moves = _payout(liquidity, config, caller, contract_id)
    moves.append(Move(1, symbol, caller, SYSTEM_WALLET, contract_id))
    return build_transaction(
        view, moves,
        [pool_state_change(view, pool.with_reserve(state)), _position_change(view, closed)],
        origin=_origin(caller, symbol, "REMOVE_LIQUIDITY"),
    )


def compute_withdraw_interest(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
) -> PendingTransaction:
    """
    Pay out a position's accrued interest and keep its principal.

    The position's shares are recomputed for the unchanged principal:
        new_shares = T * principal // R    (values before the withdrawal)

    Returns an empty transaction when nothing has accrued.
    """
    position = _owned_position(view, config, caller, symbol)
    pool = load_pool(view, pool_symbol(config.name))
    now = view.current_time

    state = pool.reserve_state
    reserve = calculate_reserve(state, now, config.schedule)
    interest = calculate_accrued_interest(position, reserve, pool.total_shares)
    if interest == 0:
        return empty_pending_transaction(view)

    new_shares = pool.total_shares * position.principal // reserve
    burn = position.shares - new_shares
    if burn >= pool.total_shares:
        if position.principal > 0:
            # Sole position whose principal is worth less than one share keeps one
            new_shares, burn = 1, burn - 1
        else:
            # Sole position with no principal left takes everything
            state = vest_all(state, now)
            interest = state.fixed_reserve
    _require_available(state, interest, now, config)

    state = withdraw_from_reserve(state, interest, now, config.schedule)
    state = replace(state, total_shares=state.total_shares - burn)
    new_position = replace(position, shares=new_shares)

    return build_transaction(
        view, _payout(interest, config, caller, f"withdraw_interest_{symbol}"),
        [pool_state_change(view, pool.with_reserve(state)), _position_change(view, new_position)],
        origin=_origin(caller, symbol, "WITHDRAW_INTEREST"),
    )


def compute_transfer_position(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    new_holder: str,
) -> PendingTransaction:
    """Hand a position receipt, and with it the position, to `new_holder`."""
    position = _owned_position(view, config, caller, symbol)
    if not new_holder or new_holder in (caller, SYSTEM_WALLET):
        raise ValidationError(ErrorCode.INVALID_IDENTITY, f"cannot transfer {symbol} to {new_holder!r}")
    pool = load_pool(view, pool_symbol(config.name))
    moves = [Move(1, position.symbol, caller, new_holder, f"transfer_{symbol}")]
    return build_transaction(
        view, moves, [pool_state_change(view, pool)],
        origin=_origin(caller, symbol, "TRANSFER_POSITION"),
    )
