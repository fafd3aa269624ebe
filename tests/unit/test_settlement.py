"""
test_settlement.py - Unit tests for loan payment settlement

Tests:
- Split of the curve cost into vault fee and pool interest
- Conversion when the payment asset is not the pool asset
- Generated moves
"""

from rentpool import (
    EnterpriseConfig, LoanEstimate, Move, calculate_settlement, settlement_moves,
)

from tests.helpers import ONE_TOKEN, ONE_USDC, make_converter


CONFIG = EnterpriseConfig("main", "TST", "admin", converter=make_converter())


class TestCalculateSettlement:

    def test_pool_asset(self):
        # 3% of a 100 token cost goes to the vault
        settlement = calculate_settlement(LoanEstimate(97 * ONE_TOKEN, 3 * ONE_TOKEN, ONE_TOKEN), "TST", CONFIG)
        assert settlement.paid == settlement.converted == 100 * ONE_TOKEN
        assert settlement.service_fee == 3 * ONE_TOKEN
        assert settlement.pool_interest == 97 * ONE_TOKEN
        assert settlement.gc_fee == ONE_TOKEN

    def test_other_asset_is_converted(self):
        estimate = LoanEstimate(35 * ONE_USDC, ONE_USDC, 0)
        settlement = calculate_settlement(estimate, "USDC", CONFIG)
        assert settlement.paid == 36 * ONE_USDC
        assert settlement.converted == CONFIG.converter.convert("USDC", 36 * ONE_USDC, "TST")
        assert settlement.service_fee == settlement.converted * ONE_USDC // (36 * ONE_USDC)
        assert settlement.pool_interest + settlement.service_fee == settlement.converted
        # 36 USDC at 0.35 USDC per token is about 102.86 tokens
        assert 102 * ONE_TOKEN < settlement.converted < 103 * ONE_TOKEN

    def test_nothing_to_pay(self):
        settlement = calculate_settlement(LoanEstimate(0, 0, 5), "USDC", CONFIG)
        assert settlement.converted == settlement.service_fee == settlement.pool_interest == 0
        assert settlement.gc_fee == 5


class TestSettlementMoves:

    def test_pool_asset_moves(self):
        settlement = calculate_settlement(LoanEstimate(97, 3, 1), "TST", CONFIG)
        assert settlement_moves(settlement, "borrower", CONFIG, "borrow_x") == [
            Move(100, "TST", "borrower", "main_pool", "borrow_x"),
            Move(3, "TST", "main_pool", "main_vault", "borrow_x"),
            Move(1, "TST", "borrower", "main_pool", "borrow_x"),
        ]

    def test_converted_moves(self):
        settlement = calculate_settlement(LoanEstimate(35 * ONE_USDC, ONE_USDC, 2), "USDC", CONFIG)
        moves = settlement_moves(settlement, "borrower", CONFIG, "borrow_x")
        assert moves[0] == Move(36 * ONE_USDC, "USDC", "borrower", "converter", "borrow_x")
        assert moves[1] == Move(settlement.converted, "TST", "converter", "main_pool", "borrow_x")
        assert moves[2] == Move(settlement.service_fee, "TST", "main_pool", "main_vault", "borrow_x")
        # The gc fee stays in the payment asset
        assert moves[3] == Move(2, "USDC", "borrower", "main_pool", "borrow_x")

    def test_zero_payment_has_no_moves(self):
        settlement = calculate_settlement(LoanEstimate(0, 0, 0), "TST", CONFIG)
        assert settlement_moves(settlement, "borrower", CONFIG, "borrow_x") == []
