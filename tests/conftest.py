"""
conftest.py - Shared pytest fixtures for rentpool tests

Provides common fixtures used across unit, conformance and functional tests:
- A ledger with TST (pool asset) and USDC, and funded wallets
- An Enterprise with a static-rate converter and one registered service
- A funded pool and an active loan on it
"""

import pytest

from rentpool import Enterprise, EnterpriseConfig

from tests.helpers import (
    ONE_TOKEN, ONE_USDC, ONE_HOUR, ONE_DAY, SERVICE,
    fund, make_ledger, make_converter, register_service, advance,
)


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Ledger with TST and USDC and funded admin, lender, borrower, stranger."""
    ledger = make_ledger()
    fund(ledger, "admin", "TST", 100_000 * ONE_TOKEN)
    fund(ledger, "lender", "TST", 100_000 * ONE_TOKEN)
    fund(ledger, "borrower", "TST", 1_000 * ONE_TOKEN)
    fund(ledger, "stranger", "TST", 1_000 * ONE_TOKEN)
    return ledger


@pytest.fixture
def enterprise(ledger):
    """Enterprise "main" on TST owned by admin, with a TST/USDC converter."""
    config = EnterpriseConfig("main", "TST", "admin", converter=make_converter())
    enterprise = Enterprise(ledger, config)
    fund(ledger, config.converter.wallet, "TST", 10_000 * ONE_TOKEN)
    fund(ledger, config.converter.wallet, "USDC", 10_000 * ONE_USDC)
    return enterprise


@pytest.fixture
def service(enterprise):
    """IQPT: 3% per day at idle, 3% service fee, 12h..60d, perpetual allowed."""
    return register_service(enterprise, allows_perpetual=True)


# =============================================================================
# POOL FIXTURES
# =============================================================================

@pytest.fixture
def funded_pool(enterprise, service, ledger):
    """
    Enterprise with 1,000 TST of liquidity from lender, one hour old.

    Returns:
        (enterprise, position symbol)
    """
    position = enterprise.add_liquidity("lender", 1_000 * ONE_TOKEN)
    advance(ledger, ONE_HOUR)
    return enterprise, position


@pytest.fixture
def active_loan(funded_pool, ledger):
    """
    Borrower holds a 100 TST, one-day loan on the funded pool.

    Returns:
        (enterprise, position symbol, loan symbol)
    """
    enterprise, position = funded_pool
    loan = enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
    return enterprise, position, loan
