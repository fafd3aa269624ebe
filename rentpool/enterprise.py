"""
enterprise.py - Enterprise Coordinator

The Enterprise is the public face of a pool. Each operation:

    1. checks the caller's role where the operation is restricted
    2. runs the matching pure compute_* function against the ledger
    3. applies the resulting PendingTransaction atomically (ledger.apply)
    4. appends audit events, only after the transaction committed

Nothing is mutated outside the ledger except the event list and the
configuration record, so a rejected operation leaves no trace.

Example:
    ledger = Ledger("main", datetime(2024, 1, 1), verbose=False)
    ledger.register_unit(token("TST", "Test Token"))
    for wallet in ("admin", "lender", "borrower"):
        ledger.register_wallet(wallet)
    ...
    enterprise = Enterprise(ledger, EnterpriseConfig("main", "TST", "admin"))
    enterprise.register_service("admin", "IQ Power Test", "IQPT", rate, "TST",
                                300, timedelta(hours=12), timedelta(days=60),
                                10**18, timedelta(days=1))
    position = enterprise.add_liquidity("lender", 1000 * 10**18)
    loan = enterprise.borrow("borrower", "IQPT", "TST", 100 * 10**18,
                             timedelta(days=1), max_payment=10 * 10**18)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from .core import (
    PendingTransaction, Transaction, LedgerError, UnitNotRegistered,
    ValidationError, Unauthorized, ErrorCode,
    UNIT_TYPE_TOKEN, to_amount,
)
from .config import EnterpriseConfig
from .ledger import Ledger
from .pricing_curve import LoanEstimate
from .reserve_stream import calculate_reserve, calculate_available_reserve
from .events import (
    AuditEvent,
    LIQUIDITY_ADD, LIQUIDITY_INCREASE, LIQUIDITY_DECREASE, LIQUIDITY_REMOVE,
    LIQUIDITY_WITHDRAW_INTEREST,
    liquidity_changed_event, totals_changed_event, service_registered_event,
    payment_token_event, loan_opened_event, loan_extended_event, loan_returned_event,
    loan_transferred_event, power_token_wrapped_event, config_updated_event, shutdown_event,
)
from .units.pool import (
    PoolState, create_pool_unit, load_pool, pool_symbol,
    payment_token_index as _payment_token_index,
    compute_enable_payment_token, compute_disable_payment_token, compute_shutdown,
)
from .units.service import (
    Service, load_service, require_service, wrap_wallet,
    compute_register_service, compute_wrap, compute_unwrap,
)
from .units.liquidity import (
    LiquidityInfo, load_position, owner_of, get_accrued_interest,
    compute_add_liquidity, compute_increase_liquidity, compute_decrease_liquidity,
    compute_remove_liquidity, compute_withdraw_interest, compute_transfer_position,
)
from .units.loan import (
    LoanInfo, load_loan, calculate_borrow_estimate, calculate_reborrow_estimate,
    compute_borrow, compute_reborrow, compute_return_loan, compute_transfer_loan,
)


@dataclass(frozen=True, slots=True)
class EnterpriseInfo:
    """Snapshot of the pool's figures at one point in time."""
    name: str
    pool_asset: str
    reserve: int
    used_reserve: int
    available_reserve: int
    fixed_reserve: int
    streaming_reserve: int
    streaming_reserve_target: int
    total_shares: int
    shutdown: bool
    payment_tokens: Tuple[Tuple[str, bool], ...]
    services: Tuple[str, ...]


class Enterprise:
    """
    Coordinator of one utility-rental pool on a shared ledger.

    Every mutating method takes the acting identity as `caller`. Errors
    are EnterpriseError subclasses for rejected operations and the
    ledger's own LedgerError subclasses when custody refuses a move
    (for instance, the payer cannot cover the payment).
    """

    def __init__(self, ledger: Ledger, config: EnterpriseConfig):
        """
        Create the pool on `ledger`.

        Registers the pool record, the pool and vault wallets and the
        converter wallet if they do not exist yet.

        Raises:
            ValidationError: pool asset is not a registered fungible token
        """
        try:
            asset = ledger.get_unit(config.pool_asset)
        except UnitNotRegistered:
            raise ValidationError(ErrorCode.INVALID_ASSET,
                                  f"pool asset {config.pool_asset} is not registered") from None
        if asset.unit_type != UNIT_TYPE_TOKEN:
            raise ValidationError(ErrorCode.INVALID_ASSET, f"{config.pool_asset} is not a fungible token")

        self.ledger = ledger
        self.config = config
        self.verbose = ledger.verbose
        self.events: List[AuditEvent] = []

        for wallet in (config.owner, config.collector, config.pool_wallet, config.vault, config.converter.wallet):
            self._ensure_wallet(wallet)
        ledger.register_unit(create_pool_unit(config, ledger.current_time))

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @property
    def symbol(self) -> str:
        return pool_symbol(self.config.name)

    def _ensure_wallet(self, wallet: str) -> None:
        if not self.ledger.is_registered(wallet):
            self.ledger.register_wallet(wallet)

    def _pool(self) -> PoolState:
        return load_pool(self.ledger, self.symbol)

    def _totals(self) -> Tuple[int, int]:
        return self._pool().total_shares, self.get_reserve()

    def _require_owner(self, caller: str) -> None:
        if caller != self.config.owner:
            raise Unauthorized(ErrorCode.CALLER_NOT_OWNER, f"{caller} is not the owner of {self.config.name}")

    def _emit(self, event: AuditEvent) -> None:
        self.events.append(event)
        if self.verbose:
            print(f"EVENT {event.action} {event.symbol} {event.params_dict}")

    def _commit(self, pending: PendingTransaction) -> Optional[Transaction]:
        """Apply atomically; emit a totals event if reserve or shares moved."""
        before = self._totals()
        tx = self.ledger.apply(pending)
        after = self._totals()
        if after != before:
            self._emit(totals_changed_event(self.ledger.current_time, self.symbol, *after))
        return tx

    def _liquidity_event(self, symbol: str, kind: str, amount: int) -> None:
        pool = self._pool()
        self._emit(liquidity_changed_event(
            self.ledger.current_time, symbol, kind, amount,
            pool.total_shares, self.get_reserve(), pool.used_reserve,
        ))

    def _paid_to(self, tx: Optional[Transaction], wallet: str) -> int:
        if tx is None:
            return 0
        return sum(
            to_amount(m.quantity) for m in tx.moves
            if m.unit_symbol == self.config.pool_asset
            and m.source == self.config.pool_wallet and m.dest == wallet
        )

    # ========================================================================
    # ADMINISTRATION (owner only)
    # ========================================================================

    def register_service(
        self,
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
    ) -> Service:
        """Register a service in the next catalog slot; returns its catalog entry."""
        self._require_owner(caller)
        pending = compute_register_service(
            self.ledger, self.config, caller, name, symbol, base_rate, base_asset,
            service_fee_percent, min_loan_duration, max_loan_duration, min_gc_fee,
            gap_halving_period, allows_perpetual, allows_transfers,
        )
        wallet = wrap_wallet(symbol)
        created = not self.ledger.is_registered(wallet)
        self._ensure_wallet(wallet)
        try:
            self._commit(pending)
        except LedgerError:
            if created:
                self.ledger.unregister_wallet(wallet)
            raise
        service = load_service(self.ledger, symbol)
        self._emit(service_registered_event(self.ledger.current_time, symbol, service.index, base_asset))
        return service

    def enable_payment_token(self, caller: str, asset: str) -> int:
        """Accept `asset` for payments; returns its registry index."""
        self._require_owner(caller)
        self._commit(compute_enable_payment_token(self.ledger, self.config, caller, asset))
        index = self.payment_token_index(asset)
        self._emit(payment_token_event(self.ledger.current_time, self.symbol, asset, index, True))
        return index

    def disable_payment_token(self, caller: str, asset: str) -> None:
        self._require_owner(caller)
        self._commit(compute_disable_payment_token(self.ledger, self.config, caller, asset))
        index = self.payment_token_index(asset)
        self._emit(payment_token_event(self.ledger.current_time, self.symbol, asset, index, False))

    def update_config(self, caller: str, **changes: Any) -> EnterpriseConfig:
        """
        Change collector, vault, converter, grace periods or gc fee percent.

        Applies to operations from now on; existing loans keep their deadlines.
        """
        self._require_owner(caller)
        config = self.config.updated(**changes)
        for wallet in (config.collector, config.vault, config.converter.wallet):
            self._ensure_wallet(wallet)
        self.config = config
        self._emit(config_updated_event(self.ledger.current_time, self.symbol, tuple(sorted(changes))))
        return config

    def shutdown_forever(self, caller: str) -> None:
        """
        Shut the pool down. Irreversible.

        Adding liquidity, borrowing and reborrowing are rejected from now on;
        every position can be withdrawn in full.
        """
        self._require_owner(caller)
        self._commit(compute_shutdown(self.ledger, self.config, caller))
        self._emit(shutdown_event(self.ledger.current_time, self.symbol, self.get_reserve()))

    # ========================================================================
    # LIQUIDITY
    # ========================================================================

    def add_liquidity(self, caller: str, amount: int) -> str:
        """Deposit `amount`; returns the new position's receipt symbol."""
        pending = compute_add_liquidity(self.ledger, self.config, caller, amount)
        position = pending.units_to_create[0].symbol
        self._commit(pending)
        self._liquidity_event(position, LIQUIDITY_ADD, amount)
        return position

    def increase_liquidity(self, caller: str, symbol: str, amount: int) -> None:
        self._commit(compute_increase_liquidity(self.ledger, self.config, caller, symbol, amount))
        self._liquidity_event(symbol, LIQUIDITY_INCREASE, amount)

    def decrease_liquidity(self, caller: str, symbol: str, amount: int) -> None:
        self._commit(compute_decrease_liquidity(self.ledger, self.config, caller, symbol, amount))
        self._liquidity_event(symbol, LIQUIDITY_DECREASE, amount)

    def remove_liquidity(self, caller: str, symbol: str) -> int:
        """Close a position; returns the amount paid out."""
        tx = self._commit(compute_remove_liquidity(self.ledger, self.config, caller, symbol))
        paid = self._paid_to(tx, caller)
        self._liquidity_event(symbol, LIQUIDITY_REMOVE, paid)
        return paid

    def withdraw_interest(self, caller: str, symbol: str) -> int:
        """Pay out accrued interest; returns the amount paid (0 if none accrued)."""
        tx = self._commit(compute_withdraw_interest(self.ledger, self.config, caller, symbol))
        paid = self._paid_to(tx, caller)
        if paid:
            self._liquidity_event(symbol, LIQUIDITY_WITHDRAW_INTEREST, paid)
        return paid

    def transfer_position(self, caller: str, symbol: str, new_holder: str) -> None:
        self._commit(compute_transfer_position(self.ledger, self.config, caller, symbol, new_holder))

    # ========================================================================
    # LOANS
    # ========================================================================

    def borrow(
        self,
        caller: str,
        service: str,
        payment_asset: str,
        amount: int,
        duration: timedelta,
        max_payment: int,
    ) -> str:
        """Open a loan; returns the loan receipt symbol."""
        pending = compute_borrow(self.ledger, self.config, caller, service, payment_asset,
                                 amount, duration, max_payment)
        estimate = calculate_borrow_estimate(self.ledger, self.config, service, payment_asset, amount, duration)
        loan = pending.units_to_create[0].symbol
        self._commit(pending)
        info = self.get_loan_info(loan)
        self._emit(loan_opened_event(self.ledger.current_time, loan, caller, service, amount,
                                     payment_asset, estimate, info.maturity_time))
        return loan

    def reborrow(
        self,
        caller: str,
        loan: str,
        payment_asset: str,
        duration: timedelta,
        max_payment: int,
    ) -> None:
        """Extend a loan by `duration`, paying at the current utilization."""
        pending = compute_reborrow(self.ledger, self.config, caller, loan, payment_asset, duration, max_payment)
        before = load_loan(self.ledger, self.config, loan)
        service = load_service(self.ledger, before.service)
        estimate = calculate_reborrow_estimate(self.ledger, self.config, before, service, payment_asset, duration)
        self._commit(pending)
        after = self.get_loan_info(loan)
        self._emit(loan_extended_event(self.ledger.current_time, loan, payment_asset, estimate,
                                       before.maturity_time, after.maturity_time))

    def return_loan(self, caller: str, loan: str) -> None:
        info = load_loan(self.ledger, self.config, loan)
        self._commit(compute_return_loan(self.ledger, self.config, caller, loan))
        self._emit(loan_returned_event(self.ledger.current_time, loan, caller, info.amount, info.gc_fee))

    def transfer_loan(self, caller: str, loan: str, new_holder: str) -> None:
        """Move a loan and its power tokens to `new_holder` (before maturity only)."""
        self._commit(compute_transfer_loan(self.ledger, self.config, caller, loan, new_holder))
        self._emit(loan_transferred_event(self.ledger.current_time, loan, caller, new_holder))

    # ========================================================================
    # PERPETUAL POWER TOKENS
    # ========================================================================

    def wrap(self, caller: str, service: str, amount: int) -> None:
        self._commit(compute_wrap(self.ledger, self.config, caller, service, amount))
        self._emit(power_token_wrapped_event(self.ledger.current_time, service, caller, amount))

    def unwrap(self, caller: str, service: str, amount: int) -> None:
        self._commit(compute_unwrap(self.ledger, self.config, caller, service, amount))
        self._emit(power_token_wrapped_event(self.ledger.current_time, service, caller, -amount))

    # ========================================================================
    # READ MODEL
    # ========================================================================

    def get_reserve(self) -> int:
        pool = self._pool()
        return calculate_reserve(pool.reserve_state, self.ledger.current_time, self.config.schedule)

    def get_used_reserve(self) -> int:
        return self._pool().used_reserve

    def get_available_reserve(self) -> int:
        pool = self._pool()
        return calculate_available_reserve(pool.reserve_state, self.ledger.current_time, self.config.schedule)

    def get_info(self) -> EnterpriseInfo:
        pool = self._pool()
        now = self.ledger.current_time
        reserve = calculate_reserve(pool.reserve_state, now, self.config.schedule)
        return EnterpriseInfo(
            name=pool.name,
            pool_asset=pool.pool_asset,
            reserve=reserve,
            used_reserve=pool.used_reserve,
            available_reserve=max(0, reserve - pool.used_reserve),
            fixed_reserve=pool.fixed_reserve,
            streaming_reserve=reserve - pool.fixed_reserve,
            streaming_reserve_target=pool.streaming_reserve_target,
            total_shares=pool.total_shares,
            shutdown=pool.shutdown,
            payment_tokens=pool.payment_tokens,
            services=pool.services,
        )

    def get_liquidity_info(self, symbol: str) -> LiquidityInfo:
        return load_position(self.ledger, self.config, symbol)

    def get_loan_info(self, symbol: str) -> LoanInfo:
        return load_loan(self.ledger, self.config, symbol)

    def get_service(self, symbol: str) -> Service:
        return require_service(self.ledger, self.config, symbol)

    def list_services(self) -> List[Service]:
        """Services in catalog order."""
        return [load_service(self.ledger, symbol) for symbol in self._pool().services]

    def get_accrued_interest(self, symbol: str) -> int:
        return get_accrued_interest(self.ledger, self.config, symbol)

    def owner_of(self, symbol: str) -> Optional[str]:
        return owner_of(self.ledger, symbol)

    def estimate_loan_detailed(
        self,
        service: str,
        payment_asset: str,
        amount: int,
        duration: timedelta,
    ) -> LoanEstimate:
        return calculate_borrow_estimate(self.ledger, self.config, service, payment_asset, amount, duration)

    def estimate_loan(self, service: str, payment_asset: str, amount: int, duration: timedelta) -> int:
        """Total payment (interest + service fee + gc fee) in `payment_asset`."""
        return self.estimate_loan_detailed(service, payment_asset, amount, duration).total

    def payment_token_index(self, asset: str) -> Optional[int]:
        return _payment_token_index(self._pool(), asset)
