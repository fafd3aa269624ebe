#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Utility-Rental Pool Step by Step

Walks through the life of one pool on a fresh ledger. Each step builds on
the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Setup       - Ledger, tokens, the pool and its first service
  4-6:   Lending     - Liquidity positions, the pricing curve, borrowing
  7-9:   Time        - Streaming interest, reborrowing, the return ladder
  10-12: Exits       - Withdrawing interest, shutdown, the audit trail

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

import numpy as np

from rentpool import (
    Ledger, Move, build_transaction, token, base_rate,
    Enterprise, EnterpriseConfig, StaticRateConverter,
    LedgerError, TransferRuleViolation,
    SYSTEM_WALLET,
    reference_loan_cost, to_amount,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    decimals: int = 18

    # Initial funding, in whole tokens
    lender_tokens: int = 10_000
    borrower_tokens: int = 1_000
    collector_tokens: int = 100

    # Service terms: 3 tokens per 100 tokens per day, 3% protocol fee
    price_per_100_per_day: int = 3
    service_fee_percent: int = 300
    min_gc_fee_tokens: int = 1

    # The loan
    loan_tokens: int = 2_000
    loan_days: int = 7


CONFIG = DemoConfig()
ONE = 10 ** CONFIG.decimals

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def fmt(amount: int) -> str:
    """Base units as whole tokens with four decimals."""
    return f"{Decimal(amount) / ONE:,.4f}"


def pool_summary(enterprise: Enterprise):
    info = enterprise.get_info()
    print(f"Reserve:            {fmt(info.reserve)}")
    print(f"  fixed:            {fmt(info.fixed_reserve)}")
    print(f"  streaming:        {fmt(info.streaming_reserve)} of {fmt(info.streaming_reserve_target)}")
    print(f"Used reserve:       {fmt(info.used_reserve)}")
    print(f"Available reserve:  {fmt(info.available_reserve)}")
    print(f"Total shares:       {fmt(info.total_shares)}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_ledger():
    """Create the ledger and mint the pool asset."""
    step_header(1, "Ledger and Tokens",
        "Everything a pool owns lives in wallets on a double-entry ledger.")

    print("""
    Tokens are counted in integer base units (18 decimals here). They enter
    circulation from the SYSTEM wallet, so total supply outside it always
    equals what was minted.
    """)
    wait_for_enter()

    ledger = Ledger("tutorial", CONFIG.start_time, verbose=False)
    ledger.register_unit(token("TST", "Tutorial Token"))
    ledger.register_unit(token("USDC", "USD Coin"))
    for wallet in ("admin", "lender", "borrower", "collector", "stranger"):
        ledger.register_wallet(wallet)

    grants = [
        ("lender", CONFIG.lender_tokens),
        ("borrower", CONFIG.borrower_tokens),
        ("collector", CONFIG.collector_tokens),
    ]
    mint = build_transaction(ledger, [
        Move(tokens * ONE, "TST", SYSTEM_WALLET, wallet, f"mint_{wallet}")
        for wallet, tokens in grants
    ])
    print(f">>> ledger.execute(mint)  ->  {ledger.execute(mint).value}")
    # Executing the same pending transaction again is a no-op
    print(f">>> ledger.execute(mint)  ->  {ledger.execute(mint).value}")

    section_header("Balances")
    for wallet, _ in grants:
        print(f"{wallet:10s} {fmt(to_amount(ledger.get_balance(wallet, 'TST')))} TST")
    return ledger


def step_02_open_pool(ledger: Ledger) -> Enterprise:
    """Create the enterprise on the ledger."""
    step_header(2, "Opening the Pool",
        "An Enterprise is one pool: a pool asset, an owner and a collector.")

    converter = StaticRateConverter({("TST", "USDC"): Decimal("0.35") * 10**6 / ONE})
    config = EnterpriseConfig("tutorial", "TST", "admin", collector="collector", converter=converter)
    enterprise = Enterprise(ledger, config)

    print(f"Pool record:        {enterprise.symbol}")
    print(f"Pool wallet:        {config.pool_wallet}")
    print(f"Vault:              {config.vault}")
    print(f"Streaming period:   {config.streaming_period} ({config.streaming_schedule})")
    print(f"Borrower grace:     {config.borrower_loan_return_grace_period}")
    print(f"Collector grace:    {config.enterprise_loan_collect_grace_period}")
    return enterprise


def step_03_register_service(enterprise: Enterprise):
    """Register the service borrowers rent."""
    step_header(3, "Registering a Service",
        "A service is a power token with its own price and loan terms.")

    rate = base_rate(100 * ONE, timedelta(days=1), CONFIG.price_per_100_per_day * ONE)
    service = enterprise.register_service(
        "admin", "Tutorial Power", "TPWR", rate, "TST",
        CONFIG.service_fee_percent, timedelta(hours=12), timedelta(days=60),
        CONFIG.min_gc_fee_tokens * ONE, timedelta(days=1),
    )
    print(f"Service:            {service.symbol} (catalog slot {service.index})")
    print(f"Base rate:          {rate:.3e} per unit per second")
    print(f"Service fee:        {service.service_fee_percent / 100:.2f}% of the loan cost")
    print(f"Durations:          {service.min_loan_duration} .. {service.max_loan_duration}")


# ============================================================================
# PHASE 2: LENDING (Steps 4-6)
# ============================================================================

def step_04_add_liquidity(ledger: Ledger, enterprise: Enterprise) -> str:
    """Deposit into the pool."""
    step_header(4, "Adding Liquidity",
        "A deposit mints pool shares and a one-of-a-kind position receipt.")

    position = enterprise.add_liquidity("lender", CONFIG.lender_tokens * ONE)
    info = enterprise.get_liquidity_info(position)
    print(f">>> enterprise.add_liquidity('lender', {CONFIG.lender_tokens} tokens)  ->  {position}")
    print(f"Principal:          {fmt(info.principal)}")
    print(f"Shares:             {fmt(info.shares)}")
    print(f"Receipt held by:    {enterprise.owner_of(position)}")

    section_header("Pool")
    pool_summary(enterprise)
    ledger.advance_time(ledger.current_time + timedelta(hours=1))
    return position


def step_05_pricing_curve(enterprise: Enterprise):
    """Show how price rises with utilization."""
    step_header(5, "The Pricing Curve",
        "Each extra unit borrowed costs more than the last.")

    reserve = enterprise.get_reserve()
    used = np.linspace(0, 0.8, 9) * (reserve / ONE)
    rate = CONFIG.price_per_100_per_day / 100 / 86400
    costs = reference_loan_cost(rate, reserve / ONE, used, 100.0, 86400.0)

    print("Cost of borrowing 100 tokens for a day, by tokens already lent out:\n")
    print(f"{'used':>10s} {'cost':>10s} {'vs idle':>8s}")
    for u, cost in zip(used, costs):
        print(f"{u:10,.0f} {cost:10.4f} {cost / costs[0]:7.2f}x")

    estimate = enterprise.estimate_loan_detailed("TPWR", "TST", 100 * ONE, timedelta(days=1))
    section_header("Exact quote on the idle pool")
    print(f"Curve cost:         {fmt(estimate.cost)}")
    print(f"  to the pool:      {fmt(estimate.interest)}")
    print(f"  service fee:      {fmt(estimate.service_fee)}")
    print(f"GC fee (deposit):   {fmt(estimate.gc_fee)}")


def step_06_borrow(ledger: Ledger, enterprise: Enterprise) -> str:
    """Rent power tokens."""
    step_header(6, "Borrowing",
        "A loan pays up front and receives power tokens bound to a loan receipt.")

    duration = timedelta(days=CONFIG.loan_days)
    amount = CONFIG.loan_tokens * ONE
    quote = enterprise.estimate_loan("TPWR", "TST", amount, duration)
    print(f"Quote:              {fmt(quote)} TST")

    section_header("Slippage protection")
    try:
        enterprise.borrow("borrower", "TPWR", "TST", amount, duration, quote - 1)
    except LedgerError as e:
        print(f"max_payment one unit short  ->  {type(e).__name__}: {e}")

    loan = enterprise.borrow("borrower", "TPWR", "TST", amount, duration, quote)
    info = enterprise.get_loan_info(loan)
    print(f"\n>>> enterprise.borrow(...)  ->  {loan}")
    print(f"Power tokens:       {fmt(to_amount(ledger.get_balance('borrower', 'TPWR')))} TPWR")
    print(f"Maturity:           {info.maturity_time}")

    section_header("Bound tokens stay with the loan")
    gift = build_transaction(ledger, [Move(ONE, "TPWR", "borrower", "stranger", "gift")])
    try:
        ledger.apply(gift)
    except TransferRuleViolation as e:
        print(f"TransferRuleViolation: {e}")

    section_header("Pool")
    pool_summary(enterprise)
    return loan


# ============================================================================
# PHASE 3: TIME (Steps 7-9)
# ============================================================================

def step_07_streaming(ledger: Ledger, enterprise: Enterprise, position: str):
    """Watch interest vest."""
    step_header(7, "Streaming Interest",
        "Earned interest vests over the streaming period, not at once.")

    for hours in (0, 2, 2, 4):
        ledger.advance_time(ledger.current_time + timedelta(hours=hours))
        print(f"{ledger.current_time}  accrued to {position}: "
              f"{fmt(enterprise.get_accrued_interest(position))}")


def step_08_reborrow(ledger: Ledger, enterprise: Enterprise, loan: str):
    """Extend the loan."""
    step_header(8, "Reborrowing",
        "Extending a loan is priced like a fresh loan at today's utilization.")

    before = enterprise.get_loan_info(loan).maturity_time
    enterprise.reborrow("borrower", loan, "TST", timedelta(days=2), 1_000 * ONE)
    after = enterprise.get_loan_info(loan).maturity_time
    print(f"Maturity:           {before}  ->  {after}")


def step_09_return_ladder(ledger: Ledger, enterprise: Enterprise, loan: str):
    """Who may close a loan, and when."""
    step_header(9, "The Return Ladder",
        "The borrower, then the collector, then anyone may close a loan.")

    info = enterprise.get_loan_info(loan)
    print(f"Borrower grace until:   {info.borrower_grace_deadline}")
    print(f"Collector grace until:  {info.collector_grace_deadline}")

    ledger.advance_time(info.borrower_grace_deadline)
    for caller in ("stranger", "collector"):
        before = to_amount(ledger.get_balance(caller, "TST"))
        try:
            enterprise.return_loan(caller, loan)
        except LedgerError as e:
            print(f"{caller:10s} refused: {e}")
            continue
        gained = to_amount(ledger.get_balance(caller, "TST")) - before
        print(f"{caller:10s} returned {loan} and collected the gc fee of {fmt(gained)}")

    section_header("Pool")
    pool_summary(enterprise)


# ============================================================================
# PHASE 4: EXITS (Steps 10-12)
# ============================================================================

def step_10_withdraw(ledger: Ledger, enterprise: Enterprise, position: str):
    """Take interest, keep principal."""
    step_header(10, "Withdrawing Interest",
        "Interest can be taken out while the principal keeps earning.")

    ledger.advance_time(ledger.current_time + timedelta(hours=8))
    paid = enterprise.withdraw_interest("lender", position)
    info = enterprise.get_liquidity_info(position)
    print(f"Paid out:           {fmt(paid)}")
    print(f"Principal:          {fmt(info.principal)}")
    print(f"Shares now:         {fmt(info.shares)}")


def step_11_shutdown(ledger: Ledger, enterprise: Enterprise, position: str):
    """Close the pool for good."""
    step_header(11, "Shutdown",
        "After shutdown nobody can deposit or borrow, and everyone can leave.")

    enterprise.shutdown_forever("admin")
    try:
        enterprise.add_liquidity("lender", ONE)
    except LedgerError as e:
        print(f"add_liquidity refused: {e}")

    paid = enterprise.remove_liquidity("lender", position)
    print(f"remove_liquidity paid {fmt(paid)}")

    section_header("Pool")
    pool_summary(enterprise)


def step_12_audit(ledger: Ledger, enterprise: Enterprise):
    """Events and conservation."""
    step_header(12, "The Audit Trail",
        "Every operation left one ledger transaction and its pool events.")

    for event in enterprise.events:
        print(f"{event.timestamp}  {event.action:20s} {event.symbol}")

    minted = sum((CONFIG.lender_tokens, CONFIG.borrower_tokens, CONFIG.collector_tokens)) * ONE
    check = ledger.verify_double_entry({"TST": Decimal(0)})
    outside = sum(to_amount(ledger.get_balance(w, "TST")) for w in ledger.registered_wallets if w != SYSTEM_WALLET)
    section_header("Conservation")
    print(f"Transactions:       {len(ledger.transaction_log)}")
    print(f"Double entry valid: {check['valid']}")
    print(f"TST outside SYSTEM: {fmt(outside)} (minted {fmt(minted)})")


def main():
    print("=" * 70)
    print("       UTILITY-RENTAL POOL TUTORIAL")
    print("=" * 70)

    ledger = step_01_ledger()
    wait_for_enter()
    enterprise = step_02_open_pool(ledger)
    wait_for_enter()
    step_03_register_service(enterprise)
    wait_for_enter()

    position = step_04_add_liquidity(ledger, enterprise)
    wait_for_enter()
    step_05_pricing_curve(enterprise)
    wait_for_enter()
    loan = step_06_borrow(ledger, enterprise)
    wait_for_enter()

    step_07_streaming(ledger, enterprise, position)
    wait_for_enter()
    step_08_reborrow(ledger, enterprise, loan)
    wait_for_enter()
    step_09_return_ladder(ledger, enterprise, loan)
    wait_for_enter()

    step_10_withdraw(ledger, enterprise, position)
    wait_for_enter()
    step_11_shutdown(ledger, enterprise, position)
    wait_for_enter()
    step_12_audit(ledger, enterprise)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See rentpool/units/*.py for the pool operations
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
