"""
Idempotency Conformance Tests

INVARIANT: A computed pool operation takes effect at most once.

    ∀ pending transaction T:
        execute(T) = APPLIED ⟹ execute(T) again = ALREADY_APPLIED
        state after second execute = state after first execute

Every pool operation rewrites the pool record with a bumped nonce, so two
intentionally identical operations (same caller, amount and time) still
have distinct intent ids and both apply.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from rentpool import Enterprise, EnterpriseConfig, ExecuteResult, LedgerError
from rentpool.units import compute_add_liquidity, compute_decrease_liquidity, load_pool

from tests.helpers import (
    ONE_TOKEN, ONE_HOUR, ONE_DAY, SERVICE,
    fund, make_ledger, make_converter, register_service, advance, snapshot,
)


def _pool():
    ledger = make_ledger()
    fund(ledger, "lender", "TST", 100_000 * ONE_TOKEN)
    fund(ledger, "borrower", "TST", 1_000 * ONE_TOKEN)
    enterprise = Enterprise(ledger, EnterpriseConfig("main", "TST", "admin", converter=make_converter()))
    register_service(enterprise)
    return ledger, enterprise


class TestReplay:

    @given(st.integers(min_value=1, max_value=5), st.integers(min_value=1, max_value=10**22))
    @settings(max_examples=50, deadline=None)
    def test_repeated_execution_always_idempotent(self, num_repeats, amount):
        """
        PROPERTY: Executing the same deposit N times applies it once.
        """
        ledger, enterprise = _pool()
        pending = compute_add_liquidity(ledger, enterprise.config, "lender", amount)

        results = [ledger.execute(pending) for _ in range(num_repeats + 1)]

        assert results[0] == ExecuteResult.APPLIED
        assert all(r == ExecuteResult.ALREADY_APPLIED for r in results[1:])
        assert enterprise.get_info().total_shares == amount
        assert enterprise.get_reserve() == amount

    def test_apply_twice_raises(self):
        ledger, enterprise = _pool()
        pending = compute_add_liquidity(ledger, enterprise.config, "lender", ONE_TOKEN)
        ledger.apply(pending)
        before = snapshot(ledger)
        with pytest.raises(LedgerError):
            ledger.apply(pending)
        assert snapshot(ledger) == before

    def test_replayed_withdrawal_pays_once(self):
        ledger, enterprise = _pool()
        position = enterprise.add_liquidity("lender", 1_000 * ONE_TOKEN)
        advance(ledger, ONE_HOUR)
        pending = compute_decrease_liquidity(ledger, enterprise.config, "lender", position, 100 * ONE_TOKEN)
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert enterprise.get_liquidity_info(position).principal == 900 * ONE_TOKEN


class TestNonce:

    def test_identical_deposits_both_apply(self):
        ledger, enterprise = _pool()
        first = enterprise.add_liquidity("lender", ONE_TOKEN)
        second = enterprise.add_liquidity("lender", ONE_TOKEN)
        assert first != second
        assert enterprise.get_reserve() == 2 * ONE_TOKEN

    def test_identical_increases_both_apply(self):
        ledger, enterprise = _pool()
        position = enterprise.add_liquidity("lender", ONE_TOKEN)
        enterprise.increase_liquidity("lender", position, ONE_TOKEN)
        enterprise.increase_liquidity("lender", position, ONE_TOKEN)
        assert enterprise.get_liquidity_info(position).principal == 3 * ONE_TOKEN

    def test_identical_reborrows_both_apply(self):
        ledger, enterprise = _pool()
        enterprise.add_liquidity("lender", 1_000 * ONE_TOKEN)
        advance(ledger, ONE_HOUR)
        loan = enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        maturity = enterprise.get_loan_info(loan).maturity_time
        enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 5 * ONE_TOKEN)
        enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 5 * ONE_TOKEN)
        assert enterprise.get_loan_info(loan).maturity_time == maturity + 2 * ONE_DAY

    def test_every_operation_bumps_nonce(self):
        ledger, enterprise = _pool()
        start = load_pool(ledger, enterprise.symbol).nonce
        position = enterprise.add_liquidity("lender", ONE_TOKEN)
        advance(ledger, ONE_HOUR)
        enterprise.transfer_position("lender", position, "borrower")
        assert load_pool(ledger, enterprise.symbol).nonce == start + 2

    def test_stale_pending_is_distinct_from_fresh(self):
        ledger, enterprise = _pool()
        stale = compute_add_liquidity(ledger, enterprise.config, "lender", ONE_TOKEN)
        enterprise.add_liquidity("lender", ONE_TOKEN)
        fresh = compute_add_liquidity(ledger, enterprise.config, "lender", ONE_TOKEN)
        assert stale.intent_id != fresh.intent_id
