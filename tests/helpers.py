"""
helpers.py - Constants and helpers shared by the rentpool tests

Imported by conftest.py for the fixtures and directly by test modules that
need amounts, time steps or snapshot utilities.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Tuple

from rentpool import (
    Ledger, Enterprise, StaticRateConverter,
    token, base_rate, to_amount,
)


ONE_TOKEN = 10**18
ONE_USDC = 10**6
START = datetime(2025, 1, 1)
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)

SERVICE = "IQPT"
# 3 tokens per 100 tokens per day
BASE_RATE = base_rate(100 * ONE_TOKEN, ONE_DAY, 3 * ONE_TOKEN)
# 0.35 USDC per token, expressed per base unit
USDC_PER_TOKEN_UNIT = Decimal("0.35") * ONE_USDC / ONE_TOKEN


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(ledger: Ledger, wallet: str, asset: str, amount: int) -> None:
    """Credit `amount` of `asset` to `wallet`, registering the wallet if needed."""
    if not ledger.is_registered(wallet):
        ledger.register_wallet(wallet)
    current = ledger.get_balance(wallet, asset)
    ledger.set_balance(wallet, asset, current + Decimal(amount))


def balance(ledger: Ledger, wallet: str, asset: str) -> int:
    return to_amount(ledger.get_balance(wallet, asset))


def make_ledger(name: str = "test") -> Ledger:
    """Ledger at START with TST and USDC registered and no wallets funded."""
    ledger = Ledger(name, START, verbose=False, test_mode=True)
    ledger.register_unit(token("TST", "Test Token"))
    ledger.register_unit(token("USDC", "USD Coin"))
    return ledger


def make_converter() -> StaticRateConverter:
    return StaticRateConverter({("TST", "USDC"): USDC_PER_TOKEN_UNIT})


def register_service(
    enterprise: Enterprise,
    symbol: str = SERVICE,
    rate: Decimal = BASE_RATE,
    base_asset: str = "TST",
    service_fee_percent: int = 300,
    min_loan_duration: timedelta = 12 * ONE_HOUR,
    max_loan_duration: timedelta = 60 * ONE_DAY,
    min_gc_fee: int = 0,
    gap_halving_period: timedelta = ONE_DAY,
    allows_perpetual: bool = False,
    allows_transfers: bool = True,
):
    """Register a service as the owner, with the defaults used across the suite."""
    return enterprise.register_service(
        enterprise.config.owner, f"{symbol} power", symbol, rate, base_asset,
        service_fee_percent, min_loan_duration, max_loan_duration, min_gc_fee,
        gap_halving_period, allows_perpetual, allows_transfers,
    )


def advance(ledger: Ledger, delta: timedelta) -> None:
    ledger.advance_time(ledger.current_time + delta)


def snapshot(ledger: Ledger) -> Tuple[Dict[Tuple[str, str], Decimal], Dict[str, Any], int]:
    """Balances, unit states and log length, for no-partial-state assertions."""
    balances = {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in ledger.registered_wallets
        for unit in ledger.units
    }
    states = {symbol: ledger.get_unit_state(symbol) for symbol in ledger.units}
    return balances, states, len(ledger.transaction_log)


def pool_wallet_identity(enterprise: Enterprise, gc_fees_held: int = 0) -> bool:
    """Pool wallet holds exactly fixed reserve + streaming target + held gc fees."""
    info = enterprise.get_info()
    held = balance(enterprise.ledger, enterprise.config.pool_wallet, enterprise.config.pool_asset)
    return held == info.fixed_reserve + info.streaming_reserve_target + gc_fees_held
