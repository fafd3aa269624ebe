"""
test_events.py - Unit tests for audit events

Tests:
- AuditEvent accessors
- Events emitted by Enterprise operations, in order
- Totals events only when reserve or shares change
- Rejected operations emit nothing
"""

import pytest

from rentpool import AuditEvent, Enterprise, EnterpriseConfig, Ledger, SlippageExceeded, token
from rentpool.events import (
    LIQUIDITY_CHANGED, TOTALS_CHANGED, SERVICE_REGISTERED, PAYMENT_TOKEN_CHANGED,
    LOAN_OPENED, LOAN_EXTENDED, LOAN_RETURNED, LOAN_TRANSFERRED, POWER_TOKEN_WRAPPED,
    CONFIG_UPDATED, SHUTDOWN, LIQUIDITY_ADD, LIQUIDITY_REMOVE,
)

from tests.helpers import ONE_TOKEN, ONE_HOUR, ONE_DAY, SERVICE, START, fund, advance


def _actions(enterprise, since=0):
    return [event.action for event in enterprise.events[since:]]


class TestAuditEvent:

    def test_params(self):
        event = AuditEvent(START, LOAN_RETURNED, "LOAN_main_1", (("closer", "admin"), ("gc_fee", 0)))
        assert event.params_dict == {"closer": "admin", "gc_fee": 0}
        assert event["closer"] == "admin"

    def test_missing_param(self):
        with pytest.raises(KeyError):
            AuditEvent(START, SHUTDOWN)["reserve"]


class TestEnterpriseEvents:

    def test_service_registration(self, enterprise, service):
        event = enterprise.events[-1]
        assert event.action == SERVICE_REGISTERED
        assert event.symbol == SERVICE
        assert event["index"] == 0

    def test_add_liquidity(self, enterprise, service):
        start = len(enterprise.events)
        position = enterprise.add_liquidity("lender", 1_000 * ONE_TOKEN)
        assert _actions(enterprise, start) == [TOTALS_CHANGED, LIQUIDITY_CHANGED]
        totals, changed = enterprise.events[start:]
        assert totals["total_shares"] == totals["reserve"] == 1_000 * ONE_TOKEN
        assert changed.symbol == position
        assert changed["kind"] == LIQUIDITY_ADD
        assert changed["amount"] == 1_000 * ONE_TOKEN

    def test_borrow_leaves_totals_alone(self, funded_pool):
        enterprise, _ = funded_pool
        start = len(enterprise.events)
        estimate = enterprise.estimate_loan_detailed(SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY)
        loan = enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, 5 * ONE_TOKEN)
        assert _actions(enterprise, start) == [LOAN_OPENED]
        event = enterprise.events[-1]
        assert event.symbol == loan
        assert event["borrower"] == "borrower"
        assert event["interest"] == estimate.interest
        assert event["service_fee"] == estimate.service_fee
        assert event["maturity_time"] == enterprise.get_loan_info(loan).maturity_time.isoformat()

    def test_loan_lifecycle(self, active_loan, ledger):
        enterprise, position, loan = active_loan
        start = len(enterprise.events)
        enterprise.reborrow("borrower", loan, "TST", ONE_DAY, 10 * ONE_TOKEN)
        enterprise.transfer_loan("borrower", loan, "stranger")
        advance(ledger, ONE_HOUR)
        enterprise.return_loan("stranger", loan)
        actions = _actions(enterprise, start)
        assert [a for a in actions if a != TOTALS_CHANGED] == [LOAN_EXTENDED, LOAN_TRANSFERRED, LOAN_RETURNED]
        returned = enterprise.events[-1]
        assert returned["closer"] == "stranger"
        assert returned["amount"] == 100 * ONE_TOKEN

    def test_remove_reports_payout(self, funded_pool):
        enterprise, position = funded_pool
        enterprise.remove_liquidity("lender", position)
        event = enterprise.events[-1]
        assert event["kind"] == LIQUIDITY_REMOVE
        assert event["amount"] == 1_000 * ONE_TOKEN
        assert event["total_shares"] == 0

    def test_wrap_and_unwrap(self, enterprise, service):
        enterprise.wrap("stranger", SERVICE, 2 * ONE_TOKEN)
        enterprise.unwrap("stranger", SERVICE, ONE_TOKEN)
        wrapped, unwrapped = enterprise.events[-2:]
        assert wrapped.action == unwrapped.action == POWER_TOKEN_WRAPPED
        assert wrapped["amount"] == 2 * ONE_TOKEN
        assert unwrapped["amount"] == -ONE_TOKEN

    def test_admin_events(self, enterprise):
        enterprise.enable_payment_token("admin", "USDC")
        enterprise.update_config("admin", gc_fee_percent=50, collector="keeper")
        enterprise.shutdown_forever("admin")
        token_event, config_event, shutdown = enterprise.events[-3:]
        assert token_event.action == PAYMENT_TOKEN_CHANGED
        assert token_event["enabled"] is True
        assert config_event.action == CONFIG_UPDATED
        assert config_event["fields"] == ("collector", "gc_fee_percent")
        assert shutdown.action == SHUTDOWN

    def test_rejected_operation_emits_nothing(self, funded_pool):
        enterprise, _ = funded_pool
        count = len(enterprise.events)
        with pytest.raises(SlippageExceeded):
            enterprise.borrow("borrower", SERVICE, "TST", 100 * ONE_TOKEN, ONE_DAY, 1)
        assert len(enterprise.events) == count


class TestVerbose:

    def test_events_printed(self, capsys):
        ledger = Ledger("loud", START, verbose=True, test_mode=True)
        ledger.register_unit(token("TST", "Test Token"))
        fund(ledger, "lender", "TST", 10 * ONE_TOKEN)
        enterprise = Enterprise(ledger, EnterpriseConfig("loud", "TST", "admin"))
        advance(ledger, ONE_HOUR)
        enterprise.add_liquidity("lender", ONE_TOKEN)
        out = capsys.readouterr().out
        assert "EVENT liquidity_changed INTEREST_loud_1" in out
