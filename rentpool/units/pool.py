"""
pool.py - Pool Record Unit

The pool record is a unit that never moves between wallets. Its state is
the single source of truth for the pool's reserve figures, share count,
payment token registry, service catalog and id counters. Every pool
operation reads it through load_pool() and writes it back through one
UnitStateChange in the same transaction as its moves.

=== STATE ===

    fixed_reserve             settled reserve
    streaming_reserve         vested streaming interest as of streaming_updated_at
    streaming_reserve_target  queued interest (vested + pending)
    streaming_updated_at      last stream checkpoint
    used_reserve              reserve lent out by active loans
    total_shares              outstanding shares across all positions
    shutdown                  one-way terminal flag
    payment_tokens            [[symbol, enabled], ...], index 0 = pool asset
    services                  [power token symbol, ...], index = catalog slot
    next_position_id          counter for INTEREST_<pool>_<id> receipts
    next_loan_id              counter for LOAN_<pool>_<id> receipts
    nonce                     number of operations applied to the pool

=== PURE FUNCTIONS ===

    load_pool(view, symbol) -> PoolState
    to_state_dict(pool) -> dict
    compute_enable_payment_token(view, config, caller, asset)
    compute_disable_payment_token(view, config, caller, asset)
    compute_shutdown(view, config, caller)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, TransferRuleViolation,
    ValidationError, InvalidState, ErrorCode,
    build_transaction, UNIT_TYPE_POOL, UNIT_TYPE_TOKEN, UnitNotRegistered,
    _freeze_state,
)
from ..config import EnterpriseConfig
from ..reserve_stream import ReserveState, vest_all


# =============================================================================
# SYMBOLS
# =============================================================================

def pool_symbol(name: str) -> str:
    return f"POOL_{name}"


def position_symbol(name: str, position_id: int) -> str:
    return f"INTEREST_{name}_{position_id}"


def loan_symbol(name: str, loan_id: int) -> str:
    return f"LOAN_{name}_{loan_id}"


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True, slots=True)
class PoolState:
    """Typed snapshot of the pool record."""
    name: str
    pool_asset: str
    fixed_reserve: int
    streaming_reserve: int
    streaming_reserve_target: int
    streaming_updated_at: datetime
    used_reserve: int
    total_shares: int
    shutdown: bool
    payment_tokens: Tuple[Tuple[str, bool], ...]
    services: Tuple[str, ...]
    next_position_id: int
    next_loan_id: int
    nonce: int = 0

    @property
    def symbol(self) -> str:
        return pool_symbol(self.name)

    @property
    def reserve_state(self) -> ReserveState:
        return ReserveState(
            fixed_reserve=self.fixed_reserve,
            streaming_reserve=self.streaming_reserve,
            streaming_reserve_target=self.streaming_reserve_target,
            streaming_updated_at=self.streaming_updated_at,
            used_reserve=self.used_reserve,
            total_shares=self.total_shares,
        )

    def with_reserve(self, reserve: ReserveState) -> PoolState:
        """Copy with every reserve figure taken from `reserve`."""
        return replace(
            self,
            fixed_reserve=reserve.fixed_reserve,
            streaming_reserve=reserve.streaming_reserve,
            streaming_reserve_target=reserve.streaming_reserve_target,
            streaming_updated_at=reserve.streaming_updated_at,
            used_reserve=reserve.used_reserve,
            total_shares=reserve.total_shares,
        )


def load_pool(view: LedgerView, symbol: str) -> PoolState:
    """
    Load the pool record as a frozen PoolState.

    This is the only place pool state is read from the ledger.
    """
    raw = view.get_unit_state(symbol)
    return PoolState(
        name=raw['name'],
        pool_asset=raw['pool_asset'],
        fixed_reserve=int(raw.get('fixed_reserve', 0)),
        streaming_reserve=int(raw.get('streaming_reserve', 0)),
        streaming_reserve_target=int(raw.get('streaming_reserve_target', 0)),
        streaming_updated_at=raw.get('streaming_updated_at') or view.current_time,
        used_reserve=int(raw.get('used_reserve', 0)),
        total_shares=int(raw.get('total_shares', 0)),
        shutdown=bool(raw.get('shutdown', False)),
        payment_tokens=tuple((sym, bool(enabled)) for sym, enabled in raw.get('payment_tokens', [])),
        services=tuple(raw.get('services', [])),
        next_position_id=int(raw.get('next_position_id', 1)),
        next_loan_id=int(raw.get('next_loan_id', 1)),
        nonce=int(raw.get('nonce', 0)),
    )


def to_state_dict(pool: PoolState) -> Dict[str, Any]:
    """Convert a PoolState back to the dict stored in the pool unit."""
    return {
        'name': pool.name,
        'pool_asset': pool.pool_asset,
        'fixed_reserve': pool.fixed_reserve,
        'streaming_reserve': pool.streaming_reserve,
        'streaming_reserve_target': pool.streaming_reserve_target,
        'streaming_updated_at': pool.streaming_updated_at,
        'used_reserve': pool.used_reserve,
        'total_shares': pool.total_shares,
        'shutdown': pool.shutdown,
        'payment_tokens': [[sym, enabled] for sym, enabled in pool.payment_tokens],
        'services': list(pool.services),
        'next_position_id': pool.next_position_id,
        'next_loan_id': pool.next_loan_id,
        'nonce': pool.nonce,
    }


def pool_state_change(view: LedgerView, new_pool: PoolState) -> UnitStateChange:
    """
    UnitStateChange replacing the stored pool record with `new_pool`.

    The nonce is bumped so that two operations with identical moves never
    share an intent_id.
    """
    old_state = view.get_unit_state(new_pool.symbol)
    new_pool = replace(new_pool, nonce=int(old_state.get('nonce', 0)) + 1)
    return UnitStateChange(
        unit=new_pool.symbol,
        old_state=old_state,
        new_state=to_state_dict(new_pool),
    )


def _pool_transfer_rule(view: LedgerView, move: Move) -> None:
    raise TransferRuleViolation(f"{move.unit_symbol} is a pool record and cannot be moved")


def create_pool_unit(config: EnterpriseConfig, created_at: datetime) -> Unit:
    """
    Create the pool record unit for a new enterprise.

    The pool asset is registered as payment token 0 and is always enabled.
    """
    pool = PoolState(
        name=config.name,
        pool_asset=config.pool_asset,
        fixed_reserve=0,
        streaming_reserve=0,
        streaming_reserve_target=0,
        streaming_updated_at=created_at,
        used_reserve=0,
        total_shares=0,
        shutdown=False,
        payment_tokens=((config.pool_asset, True),),
        services=(),
        next_position_id=1,
        next_loan_id=1,
    )
    return Unit(
        symbol=pool.symbol,
        name=f"Enterprise pool {config.name}",
        unit_type=UNIT_TYPE_POOL,
        decimal_places=0,
        transfer_rule=_pool_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(pool)),
    )


# =============================================================================
# PAYMENT TOKENS
# =============================================================================

def payment_token_index(pool: PoolState, asset: str) -> Optional[int]:
    """Registry index of `asset`, or None if it was never registered."""
    for index, (symbol, _) in enumerate(pool.payment_tokens):
        if symbol == asset:
            return index
    return None


def require_payment_token(pool: PoolState, asset: str) -> int:
    """
    Index of an enabled payment token.

    Raises:
        ValidationError: asset was never registered
        InvalidState: asset is registered but disabled
    """
    index = payment_token_index(pool, asset)
    if index is None:
        raise ValidationError(ErrorCode.INVALID_ASSET, f"{asset} is not a payment token of {pool.name}")
    if not pool.payment_tokens[index][1]:
        raise InvalidState(ErrorCode.PAYMENT_TOKEN_DISABLED, f"payment token {asset} is disabled")
    return index


def require_active(pool: PoolState) -> None:
    if pool.shutdown:
        raise InvalidState(ErrorCode.ENTERPRISE_SHUTDOWN, f"enterprise {pool.name} is shut down")


def _admin_origin(caller: str, pool: PoolState, event: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.ADMIN, caller, pool.symbol, event)


def _set_payment_token(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    asset: str,
    enabled: bool,
) -> PendingTransaction:
    pool = load_pool(view, pool_symbol(config.name))
    try:
        unit = view.get_unit(asset)
    except UnitNotRegistered:
        raise ValidationError(ErrorCode.INVALID_ASSET, f"{asset} is not a registered asset") from None
    if unit.unit_type != UNIT_TYPE_TOKEN:
        raise ValidationError(ErrorCode.INVALID_ASSET, f"{asset} is not a fungible token")
    if asset == pool.pool_asset and not enabled:
        raise ValidationError(ErrorCode.INVALID_ASSET, "the pool asset cannot be disabled")

    tokens = list(pool.payment_tokens)
    index = payment_token_index(pool, asset)
    if index is None:
        if not enabled:
            raise ValidationError(ErrorCode.INVALID_ASSET, f"{asset} is not a payment token of {pool.name}")
        tokens.append((asset, True))
    else:
        tokens[index] = (asset, enabled)

    new_pool = replace(pool, payment_tokens=tuple(tokens))
    event = "ENABLE_PAYMENT_TOKEN" if enabled else "DISABLE_PAYMENT_TOKEN"
    return build_transaction(
        view, [], [pool_state_change(view, new_pool)],
        origin=_admin_origin(caller, pool, event),
    )


def compute_enable_payment_token(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    asset: str,
) -> PendingTransaction:
    """Register `asset` as a payment token, or re-enable it at its old index."""
    return _set_payment_token(view, config, caller, asset, True)


def compute_disable_payment_token(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    asset: str,
) -> PendingTransaction:
    """Stop accepting `asset` for new payments. Its index stays reserved."""
    return _set_payment_token(view, config, caller, asset, False)


# =============================================================================
# SHUTDOWN
# =============================================================================

def compute_shutdown(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
) -> PendingTransaction:
    """
    Shut the pool down forever.

    Vests all queued interest into the fixed reserve and zeroes the used
    reserve, so every position can be withdrawn in full regardless of
    outstanding loans.

    Raises:
        InvalidState: already shut down
    """
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)
    reserve = replace(vest_all(pool.reserve_state, view.current_time), used_reserve=0)
    new_pool = replace(pool.with_reserve(reserve), shutdown=True)
    return build_transaction(
        view, [], [pool_state_change(view, new_pool)],
        origin=_admin_origin(caller, pool, "SHUTDOWN"),
    )
