"""
test_loan.py - Unit tests for loans

Tests:
- Borrowing: receipt, power tokens, payment split, bounds and slippage
- Reborrowing: extension, pricing without gc fee, authorization
- Return ladder: phases and who may close a loan when
- Loan transfer before and after maturity
"""

import pytest
from datetime import timedelta

from rentpool import (
    Move, build_transaction, calculate_interest,
    ValidationError, InvalidState, Unauthorized, InsufficientLiquidity, SlippageExceeded,
    InsufficientFunds, TransferRuleViolation, ErrorCode,
)
from rentpool.units import (
    LoanInfo, LOAN_PHASE_BORROWER_GRACE, LOAN_PHASE_COLLECTOR_GRACE, LOAN_PHASE_PUBLIC,
    LOAN_PHASE_RETURNED, loan_phase, check_return_authorization, calculate_reborrow_estimate,
)

from tests.helpers import (
    ONE_TOKEN, ONE_HOUR, ONE_DAY, SERVICE, START,
    balance, advance, snapshot, register_service, pool_wallet_identity,
)


def _loan(amount=100, maturity=START + ONE_DAY):
    return LoanInfo(
        symbol="LOAN_main_1", pool="main", loan_id=1, amount=amount, service=SERVICE,
        service_index=0, borrowing_time=START, maturity_time=maturity,
        borrower_grace_deadline=maturity + 12 * ONE_HOUR,
        collector_grace_deadline=maturity + ONE_DAY,
        gc_fee=0, payment_token="TST", payment_token_index=0,
    )


class TestBorrow:

    def test_borrow(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        estimate = enterprise.estimate_loan_detailed(SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY)
        loan = enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, estimate.total)

        assert loan == "LOAN_main_1"
        assert enterprise.owner_of(loan) == "borrower"
        assert balance(ledger, "borrower", SERVICE) == 100 * ONE_TOKEN
        assert balance(ledger, "borrower", "TST") == 1_000 * ONE_TOKEN - estimate.total
        assert balance(ledger, "main_vault", "TST") == estimate.service_fee
        assert enterprise.get_used_reserve() == 100 * ONE_TOKEN
        assert enterprise.get_info().streaming_reserve_target == estimate.interest
        assert enterprise.get_service(SERVICE).bound_of("borrower") == 100 * ONE_TOKEN
        assert pool_wallet_identity(enterprise)

    def test_service_fee_is_not_charged_on_top(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        service = enterprise.get_service(SERVICE)
        curve = calculate_interest(service.base_rate, enterprise.get_reserve(), 0, 100 * ONE_TOKEN,
                                   int(ONE_DAY.total_seconds()))
        before = balance(ledger, "borrower", "TST")
        enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, 10 * ONE_TOKEN)

        assert before - balance(ledger, "borrower", "TST") == curve
        fee = curve * 300 // 10_000
        assert balance(ledger, "main_vault", "TST") == fee
        assert enterprise.get_info().streaming_reserve_target == curve - fee

    def test_loan_record(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        info = enterprise.get_loan_info(loan)
        assert info.amount == 100 * ONE_TOKEN
        assert info.service == SERVICE
        assert info.borrowing_time == ledger.current_time
        assert info.maturity_time == ledger.current_time + ONE_DAY
        assert info.borrower_grace_deadline == info.maturity_time + 12 * ONE_HOUR
        assert info.collector_grace_deadline == info.maturity_time + ONE_DAY
        assert info.payment_token == "TST"
        assert info.payment_token_index == 0

    def test_interest_near_base_rate(self, funded_pool):
        enterprise, _ = funded_pool
        estimate = enterprise.estimate_loan_detailed(SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY)
        # 3% a day, marked up by the curve at 10% utilization
        assert 3 * ONE_TOKEN < estimate.cost < 4 * ONE_TOKEN
        assert estimate.service_fee == estimate.cost * 300 // 10_000
        assert estimate.interest == estimate.cost - estimate.service_fee
        assert estimate.gc_fee == 0

    def test_slippage(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        total = enterprise.estimate_loan(SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY)
        before = snapshot(ledger)
        with pytest.raises(SlippageExceeded) as exc:
            enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, total - 1)
        assert exc.value.code == ErrorCode.PAYMENT_EXCEEDS_MAXIMUM
        assert snapshot(ledger) == before

    @pytest.mark.parametrize("duration", [ONE_HOUR, 61 * ONE_DAY])
    def test_duration_bounds(self, funded_pool, duration):
        enterprise, _ = funded_pool
        with pytest.raises(ValidationError) as exc:
            enterprise.borrow("borrower", SERVICE, "TST", ONE_TOKEN, duration, 1_000 * ONE_TOKEN)
        assert exc.value.code == ErrorCode.INVALID_LOAN_DURATION

    @pytest.mark.parametrize("amount,code", [
        (1_001 * ONE_TOKEN, ErrorCode.INSUFFICIENT_AVAILABLE_RESERVE),
        (950 * ONE_TOKEN, ErrorCode.UTILIZATION_CEILING),
    ])
    def test_liquidity_limits(self, funded_pool, amount, code):
        enterprise, _ = funded_pool
        with pytest.raises(InsufficientLiquidity) as exc:
            enterprise.borrow("borrower", SERVICE, "TST", amount, ONE_DAY, 1_000 * ONE_TOKEN)
        assert exc.value.code == code

    def test_zero_amount(self, funded_pool):
        enterprise, _ = funded_pool
        with pytest.raises(ValidationError) as exc:
            enterprise.borrow("borrower", SERVICE, "TST", 0, ONE_DAY, ONE_TOKEN)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT

    def test_unknown_service(self, funded_pool):
        enterprise, _ = funded_pool
        with pytest.raises(InvalidState) as exc:
            enterprise.borrow("borrower", "NOPE", "TST", ONE_TOKEN, ONE_DAY, ONE_TOKEN)
        assert exc.value.code == ErrorCode.SERVICE_NOT_REGISTERED

    def test_payment_token_not_enabled(self, funded_pool):
        enterprise, _ = funded_pool
        with pytest.raises(ValidationError) as exc:
            enterprise.borrow("borrower", SERVICE, "USDC", ONE_TOKEN, ONE_DAY, ONE_TOKEN)
        assert exc.value.code == ErrorCode.INVALID_ASSET

    def test_payer_cannot_cover(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        before = snapshot(ledger)
        with pytest.raises(InsufficientFunds):
            enterprise.borrow("borrower", SERVICE, "TST", 900 * ONE_TOKEN, 60 * ONE_DAY, 10**9 * ONE_TOKEN)
        assert snapshot(ledger) == before
        assert not ledger.units.get("LOAN_main_1")

    def test_gc_fee_held_by_pool(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        register_service(enterprise, symbol="GCPT", min_gc_fee=ONE_TOKEN)
        loan = enterprise.borrow("borrower", "GCPT", "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        assert enterprise.get_loan_info(loan).gc_fee == ONE_TOKEN
        assert pool_wallet_identity(enterprise, gc_fees_held=ONE_TOKEN)

    def test_bound_tokens_cannot_be_moved(self, active_loan, ledger):
        pending = build_transaction(ledger, [Move(ONE_TOKEN, SERVICE, "borrower", "stranger", "gift")])
        with pytest.raises(TransferRuleViolation):
            ledger.apply(pending)


class TestReborrow:

    def test_extends_maturity(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        before = enterprise.get_loan_info(loan)
        advance(ledger, 12 * ONE_HOUR)
        enterprise.reborrow("borrower", loan, "TST", 2 * ONE_DAY, 10 * ONE_TOKEN)
        after = enterprise.get_loan_info(loan)
        assert after.maturity_time == before.maturity_time + 2 * ONE_DAY
        assert after.collector_grace_deadline == after.maturity_time + ONE_DAY
        assert after.amount == before.amount
        assert after.borrowing_time == before.borrowing_time
        assert enterprise.get_used_reserve() == 100 * ONE_TOKEN
        assert pool_wallet_identity(enterprise)

    def test_priced_as_a_fresh_loan_without_gc_fee(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        register_service(enterprise, symbol="GCPT", min_gc_fee=ONE_TOKEN)
        fresh = enterprise.estimate_loan_detailed("GCPT", "TST", 100 * ONE_TOKEN, ONE_DAY)
        loan = enterprise.borrow("borrower", "GCPT", "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        extension = calculate_reborrow_estimate(
            ledger, enterprise.config, enterprise.get_loan_info(loan),
            enterprise.get_service("GCPT"), "TST", ONE_DAY,
        )
        assert extension.interest == fresh.interest
        assert extension.service_fee == fresh.service_fee
        assert extension.gc_fee == 0

    def test_only_holder(self, active_loan):
        enterprise, _, loan = active_loan
        with pytest.raises(Unauthorized) as exc:
            enterprise.reborrow("stranger", loan, "TST", ONE_DAY, 10 * ONE_TOKEN)
        assert exc.value.code == ErrorCode.CALLER_NOT_BORROWER

    def test_maturity_in_past(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        advance(ledger, 3 * ONE_DAY)
        with pytest.raises(ValidationError) as exc:
            enterprise.reborrow("borrower", loan, "TST", 12 * ONE_HOUR, 10 * ONE_TOKEN)
        assert exc.value.code == ErrorCode.LOAN_MATURITY_IN_PAST

    def test_slippage(self, active_loan):
        enterprise, _, loan = active_loan
        with pytest.raises(SlippageExceeded):
            enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 1)

    def test_duration_bounds(self, active_loan):
        enterprise, _, loan = active_loan
        with pytest.raises(ValidationError) as exc:
            enterprise.reborrow("borrower", loan, "TST", ONE_HOUR, 10 * ONE_TOKEN)
        assert exc.value.code == ErrorCode.INVALID_LOAN_DURATION

    def test_rejected_after_shutdown(self, active_loan):
        enterprise, _, loan = active_loan
        enterprise.shutdown_forever("admin")
        with pytest.raises(InvalidState) as exc:
            enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 10 * ONE_TOKEN)
        assert exc.value.code == ErrorCode.ENTERPRISE_SHUTDOWN


class TestReturnLadder:

    @pytest.mark.parametrize("offset,phase", [
        (timedelta(0), LOAN_PHASE_BORROWER_GRACE),
        (ONE_DAY + 12 * ONE_HOUR - timedelta(seconds=1), LOAN_PHASE_BORROWER_GRACE),
        (ONE_DAY + 12 * ONE_HOUR, LOAN_PHASE_COLLECTOR_GRACE),
        (2 * ONE_DAY - timedelta(seconds=1), LOAN_PHASE_COLLECTOR_GRACE),
        (2 * ONE_DAY, LOAN_PHASE_PUBLIC),
    ])
    def test_phases(self, offset, phase):
        assert loan_phase(_loan(), START + offset) == phase

    def test_returned_phase(self):
        assert loan_phase(_loan(amount=0), START) == LOAN_PHASE_RETURNED

    def test_borrower_grace(self):
        loan, now = _loan(), START + ONE_HOUR
        check_return_authorization(loan, "borrower", "borrower", "admin", now)
        for caller in ("admin", "stranger"):
            with pytest.raises(Unauthorized) as exc:
                check_return_authorization(loan, "borrower", caller, "admin", now)
            assert exc.value.code == ErrorCode.BORROWER_GRACE_PERIOD

    def test_collector_grace(self):
        loan, now = _loan(), START + ONE_DAY + 13 * ONE_HOUR
        check_return_authorization(loan, "borrower", "borrower", "admin", now)
        check_return_authorization(loan, "borrower", "admin", "admin", now)
        with pytest.raises(Unauthorized) as exc:
            check_return_authorization(loan, "borrower", "stranger", "admin", now)
        assert exc.value.code == ErrorCode.COLLECTOR_GRACE_PERIOD

    def test_public(self):
        check_return_authorization(_loan(), "borrower", "stranger", "admin", START + 3 * ONE_DAY)


class TestReturn:

    def test_return(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        enterprise.return_loan("borrower", loan)
        assert enterprise.owner_of(loan) is None
        assert balance(ledger, "borrower", SERVICE) == 0
        assert enterprise.get_used_reserve() == 0
        assert enterprise.get_service(SERVICE).bound == {}
        assert pool_wallet_identity(enterprise)

    def test_twice(self, active_loan):
        enterprise, _, loan = active_loan
        enterprise.return_loan("borrower", loan)
        with pytest.raises(InvalidState) as exc:
            enterprise.return_loan("borrower", loan)
        assert exc.value.code == ErrorCode.LOAN_NOT_FOUND

    def test_stranger_in_borrower_grace(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        advance(ledger, ONE_DAY + ONE_HOUR)
        with pytest.raises(Unauthorized) as exc:
            enterprise.return_loan("stranger", loan)
        assert exc.value.code == ErrorCode.BORROWER_GRACE_PERIOD

    def test_collector_in_collector_grace(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        advance(ledger, ONE_DAY + 13 * ONE_HOUR)
        with pytest.raises(Unauthorized):
            enterprise.return_loan("stranger", loan)
        enterprise.return_loan("admin", loan)
        assert enterprise.get_used_reserve() == 0

    def test_public_closer_collects_gc_fee(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        register_service(enterprise, symbol="GCPT", min_gc_fee=ONE_TOKEN)
        loan = enterprise.borrow("borrower", "GCPT", "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        advance(ledger, 2 * ONE_DAY)
        before = balance(ledger, "stranger", "TST")
        enterprise.return_loan("stranger", loan)
        assert balance(ledger, "stranger", "TST") == before + ONE_TOKEN
        assert balance(ledger, "borrower", "GCPT") == 0
        assert pool_wallet_identity(enterprise)

    def test_borrower_gets_gc_fee_back(self, funded_pool, ledger):
        enterprise, _ = funded_pool
        register_service(enterprise, symbol="GCPT", min_gc_fee=ONE_TOKEN)
        loan = enterprise.borrow("borrower", "GCPT", "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        before = balance(ledger, "borrower", "TST")
        enterprise.return_loan("borrower", loan)
        assert balance(ledger, "borrower", "TST") == before + ONE_TOKEN

    def test_position_symbol_is_not_a_loan(self, active_loan):
        enterprise, position, _ = active_loan
        with pytest.raises(InvalidState) as exc:
            enterprise.return_loan("lender", position)
        assert exc.value.code == ErrorCode.LOAN_NOT_FOUND


class TestTransferLoan:

    def test_before_maturity(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        enterprise.transfer_loan("borrower", loan, "stranger")
        assert enterprise.owner_of(loan) == "stranger"
        assert balance(ledger, "stranger", SERVICE) == 100 * ONE_TOKEN
        assert balance(ledger, "borrower", SERVICE) == 0
        service = enterprise.get_service(SERVICE)
        assert service.bound_of("stranger") == 100 * ONE_TOKEN
        assert service.bound_of("borrower") == 0
        with pytest.raises(Unauthorized):
            enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 10 * ONE_TOKEN)
        enterprise.return_loan("stranger", loan)

    def test_after_maturity(self, active_loan, ledger):
        enterprise, _, loan = active_loan
        advance(ledger, ONE_DAY)
        with pytest.raises(TransferRuleViolation):
            enterprise.transfer_loan("borrower", loan, "stranger")
        assert enterprise.owner_of(loan) == "borrower"

    def test_raw_receipt_move_after_maturity(self, active_loan, ledger):
        _, _, loan = active_loan
        advance(ledger, 2 * ONE_DAY)
        pending = build_transaction(ledger, [Move(1, loan, "borrower", "stranger", "sell")])
        with pytest.raises(TransferRuleViolation):
            ledger.apply(pending)

    def test_only_holder(self, active_loan):
        enterprise, _, loan = active_loan
        with pytest.raises(Unauthorized) as exc:
            enterprise.transfer_loan("stranger", loan, "lender")
        assert exc.value.code == ErrorCode.CALLER_NOT_BORROWER

    def test_to_self(self, active_loan):
        enterprise, _, loan = active_loan
        with pytest.raises(ValidationError):
            enterprise.transfer_loan("borrower", loan, "borrower")
