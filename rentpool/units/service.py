"""
service.py - Service Catalog and Power Token Unit

Each registered service is represented by its power token: a fungible
unit whose state carries the service's pricing terms. Borrowing mints
power tokens to the borrower, returning burns them.

=== BOUND VS FREE BALANCE ===

Power tokens minted by a loan are bound to that loan. The token state
tracks, per holder, how many tokens are bound:

    free_balance(holder) = balance(holder) - bound[holder]

Bound tokens only move with their loan receipt (moves carrying
metadata {"bound_loan": <loan symbol>}) or are burned when the loan is
returned. Services that allow perpetual tokens also let holders wrap the
pool asset 1:1 into free power tokens and unwrap them back.

=== PURE FUNCTIONS ===

    load_service(view, symbol) -> Service
    compute_register_service(view, config, caller, ...)
    compute_wrap(view, config, caller, service, amount)
    compute_unwrap(view, config, caller, service, amount)
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType, TransferRuleViolation,
    ValidationError, InvalidState, ErrorCode, UnitNotRegistered,
    build_transaction, to_amount, _freeze_state,
    SYSTEM_WALLET, BASIS_POINTS, UNIT_TYPE_POWER_TOKEN,
)
from ..config import EnterpriseConfig
from .pool import (
    load_pool, pool_symbol, pool_state_change, require_active, require_payment_token,
)


@dataclass(frozen=True, slots=True)
class Service:
    """
    Catalog entry of a service.

    Attributes:
        symbol: Power token symbol
        name: Human-readable name
        pool: Name of the enterprise the service belongs to
        index: Stable catalog slot
        base_rate: Price per base unit per second, in base asset units
        base_asset: Asset the base rate is quoted in
        service_fee_percent: Protocol fee in basis points of the loan cost
        min_loan_duration: Shortest loan accepted
        max_loan_duration: Longest loan accepted
        min_gc_fee: Floor of the gc fee, in pool asset units
        gap_halving_period: Decay constant of the service's usage meter
        allows_perpetual: Whether the pool asset can be wrapped into free tokens
        allows_transfers: Whether free tokens may move between holders
        bound: Holder -> power tokens bound to that holder's loans
    """
    symbol: str
    name: str
    pool: str
    index: int
    base_rate: Decimal
    base_asset: str
    service_fee_percent: int
    min_loan_duration: timedelta
    max_loan_duration: timedelta
    min_gc_fee: int
    gap_halving_period: timedelta
    allows_perpetual: bool = False
    allows_transfers: bool = True
    bound: Dict[str, int] = field(default_factory=dict)

    @property
    def wrap_wallet(self) -> str:
        return wrap_wallet(self.symbol)

    def bound_of(self, holder: str) -> int:
        return self.bound.get(holder, 0)


def wrap_wallet(symbol: str) -> str:
    """Wallet holding the pool asset backing wrapped power tokens."""
    return f"{symbol}_wrapped"


def load_service(view: LedgerView, symbol: str) -> Service:
    """Load a service from its power token state."""
    raw = view.get_unit_state(symbol)
    return Service(
        symbol=symbol,
        name=raw['name'],
        pool=raw['pool'],
        index=int(raw['index']),
        base_rate=Decimal(str(raw['base_rate'])),
        base_asset=raw['base_asset'],
        service_fee_percent=int(raw.get('service_fee_percent', 0)),
        min_loan_duration=raw['min_loan_duration'],
        max_loan_duration=raw['max_loan_duration'],
        min_gc_fee=int(raw.get('min_gc_fee', 0)),
        gap_halving_period=raw['gap_halving_period'],
        allows_perpetual=bool(raw.get('allows_perpetual', False)),
        allows_transfers=bool(raw.get('allows_transfers', True)),
        bound={k: int(v) for k, v in raw.get('bound', {}).items()},
    )


def to_state_dict(service: Service) -> Dict[str, Any]:
    return {
        'name': service.name,
        'pool': service.pool,
        'index': service.index,
        'base_rate': service.base_rate,
        'base_asset': service.base_asset,
        'service_fee_percent': service.service_fee_percent,
        'min_loan_duration': service.min_loan_duration,
        'max_loan_duration': service.max_loan_duration,
        'min_gc_fee': service.min_gc_fee,
        'gap_halving_period': service.gap_halving_period,
        'allows_perpetual': service.allows_perpetual,
        'allows_transfers': service.allows_transfers,
        'bound': {k: v for k, v in service.bound.items() if v},
    }


def service_state_change(view: LedgerView, new_service: Service) -> UnitStateChange:
    return UnitStateChange(
        unit=new_service.symbol,
        old_state=view.get_unit_state(new_service.symbol),
        new_state=to_state_dict(new_service),
    )


def bind(service: Service, holder: str, amount: int) -> Service:
    """Copy of `service` with `amount` more tokens bound to `holder` (negative unbinds)."""
    bound = dict(service.bound)
    bound[holder] = bound.get(holder, 0) + amount
    if bound[holder] < 0:
        raise ValueError(f"cannot unbind {-amount} {service.symbol} from {holder}: only {service.bound_of(holder)} bound")
    if bound[holder] == 0:
        del bound[holder]
    return replace(service, bound=bound)


def require_service(view: LedgerView, config: EnterpriseConfig, symbol: str) -> Service:
    """
    Load a service registered with this enterprise.

    Raises:
        InvalidState: unknown symbol or a service of another enterprise
    """
    try:
        unit = view.get_unit(symbol)
    except UnitNotRegistered:
        raise InvalidState(ErrorCode.SERVICE_NOT_REGISTERED, f"service {symbol} is not registered") from None
    if unit.unit_type != UNIT_TYPE_POWER_TOKEN:
        raise InvalidState(ErrorCode.SERVICE_NOT_REGISTERED, f"{symbol} is not a power token")
    service = load_service(view, symbol)
    if service.pool != config.name:
        raise InvalidState(ErrorCode.SERVICE_NOT_REGISTERED,
                           f"service {symbol} belongs to enterprise {service.pool}")
    return service


# =============================================================================
# TRANSFER RULE
# =============================================================================

def power_token_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Enforce the bound/free split of power token balances.

    Allowed:
        - minting (source is the system wallet)
        - moves carrying metadata "bound_loan" (loan transfer or return)
        - spending at most the holder's free balance, to the system wallet
          (unwrap) or, if the service allows transfers, to another holder
    """
    if move.source == SYSTEM_WALLET:
        return
    if move.metadata and move.metadata.get('bound_loan'):
        return

    state = view.get_unit_state(move.unit_symbol)
    if move.dest != SYSTEM_WALLET and not state.get('allows_transfers', True):
        raise TransferRuleViolation(f"{move.unit_symbol} does not allow transfers")

    balance = to_amount(view.get_balance(move.source, move.unit_symbol))
    free = balance - int(state.get('bound', {}).get(move.source, 0))
    if move.quantity > free:
        raise TransferRuleViolation(
            f"{move.source} can move at most {free} {move.unit_symbol}; the rest is bound to loans"
        )


# =============================================================================
# REGISTRATION
# =============================================================================

def create_power_token_unit(service: Service) -> Unit:
    return Unit(
        symbol=service.symbol,
        name=service.name,
        unit_type=UNIT_TYPE_POWER_TOKEN,
        decimal_places=0,
        transfer_rule=power_token_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(service)),
    )


def compute_register_service(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    name: str,
    symbol: str,
    base_rate: Decimal,
    base_asset: str,
    service_fee_percent: int,
    min_loan_duration: timedelta,
    max_loan_duration: timedelta,
    min_gc_fee: int,
    gap_halving_period: timedelta,
    allows_perpetual: bool = False,
    allows_transfers: bool = True,
) -> PendingTransaction:
    """
    Register a service in the next catalog slot and create its power token.

    Raises:
        ValidationError: invalid terms, symbol already taken, catalog full
        ValidationError / InvalidState: base asset not an enabled payment token
    """
    pool = load_pool(view, pool_symbol(config.name))
    require_active(pool)

    if not name or not symbol or not symbol.strip():
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, "service name and symbol are required")
    try:
        view.get_unit(symbol)
    except UnitNotRegistered:
        pass
    else:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, f"symbol {symbol} is already registered")

    if not isinstance(base_rate, Decimal):
        base_rate = Decimal(str(base_rate))
    if base_rate <= 0:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, f"base rate must be positive, got {base_rate}")
    if not 0 <= service_fee_percent <= BASIS_POINTS:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS,
                              f"service fee must be in [0, {BASIS_POINTS}] basis points")
    if min_loan_duration < timedelta(0) or max_loan_duration <= timedelta(0):
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, "loan durations must be positive")
    if min_loan_duration > max_loan_duration:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS,
                              f"min duration {min_loan_duration} exceeds max duration {max_loan_duration}")
    if min_gc_fee < 0:
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, "min gc fee cannot be negative")
    if gap_halving_period <= timedelta(0):
        raise ValidationError(ErrorCode.INVALID_SERVICE_PARAMS, "gap halving period must be positive")
    require_payment_token(pool, base_asset)
    if len(pool.services) >= config.max_services:
        raise ValidationError(ErrorCode.SERVICE_CATALOG_FULL,
                              f"catalog of {config.name} is full ({config.max_services} services)")

    service = Service(
        symbol=symbol,
        name=name,
        pool=config.name,
        index=len(pool.services),
        base_rate=base_rate,
        base_asset=base_asset,
        service_fee_percent=service_fee_percent,
        min_loan_duration=min_loan_duration,
        max_loan_duration=max_loan_duration,
        min_gc_fee=min_gc_fee,
        gap_halving_period=gap_halving_period,
        allows_perpetual=allows_perpetual,
        allows_transfers=allows_transfers,
    )
    new_pool = replace(pool, services=pool.services + (symbol,))
    return build_transaction(
        view, [], [pool_state_change(view, new_pool)],
        origin=TransactionOrigin(OriginType.ADMIN, caller, symbol, "REGISTER_SERVICE"),
        units_to_create=(create_power_token_unit(service),),
    )


# =============================================================================
# WRAP / UNWRAP
# =============================================================================

def _perpetual_service(view: LedgerView, config: EnterpriseConfig, symbol: str, amount: int) -> Service:
    if amount <= 0:
        raise ValidationError(ErrorCode.INVALID_AMOUNT, f"amount must be positive, got {amount}")
    service = require_service(view, config, symbol)
    if not service.allows_perpetual:
        raise InvalidState(ErrorCode.PERPETUAL_TOKENS_NOT_ALLOWED,
                           f"service {symbol} does not allow perpetual tokens")
    return service


def compute_wrap(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    amount: int,
) -> PendingTransaction:
    """Lock `amount` of pool asset and mint as many free power tokens to `caller`."""
    service = _perpetual_service(view, config, symbol, amount)
    pool = load_pool(view, pool_symbol(config.name))
    contract_id = f"wrap_{symbol}"
    moves = [
        Move(amount, config.pool_asset, caller, service.wrap_wallet, contract_id),
        Move(amount, symbol, SYSTEM_WALLET, caller, contract_id),
    ]
    return build_transaction(
        view, moves, [pool_state_change(view, pool)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "WRAP"),
    )


def compute_unwrap(
    view: LedgerView,
    config: EnterpriseConfig,
    caller: str,
    symbol: str,
    amount: int,
) -> PendingTransaction:
    """Burn `amount` free power tokens of `caller` and release the locked pool asset."""
    service = _perpetual_service(view, config, symbol, amount)
    pool = load_pool(view, pool_symbol(config.name))
    contract_id = f"unwrap_{symbol}"
    moves = [
        Move(amount, symbol, caller, SYSTEM_WALLET, contract_id),
        Move(amount, config.pool_asset, service.wrap_wallet, caller, contract_id),
    ]
    return build_transaction(
        view, moves, [pool_state_change(view, pool)],
        origin=TransactionOrigin(OriginType.USER_ACTION, caller, symbol, "UNWRAP"),
    )
