"""
Units module - Pool record, services, liquidity positions and loans.

Each module pairs a unit factory with the pure compute_* functions that
operate on it. All of them are re-exported here for convenience.
"""

# Pool record
from .pool import (
    PoolState,
    create_pool_unit,
    load_pool,
    pool_symbol,
    position_symbol,
    loan_symbol,
    payment_token_index,
    require_payment_token,
    compute_enable_payment_token,
    compute_disable_payment_token,
    compute_shutdown,
)

# Services and power tokens
from .service import (
    Service,
    create_power_token_unit,
    power_token_transfer_rule,
    load_service,
    require_service,
    wrap_wallet,
    compute_register_service,
    compute_wrap,
    compute_unwrap,
)

# Liquidity positions
from .liquidity import (
    LiquidityInfo,
    shares_for_deposit,
    liquidity_of,
    shares_to_burn,
    owner_of,
    load_position,
    calculate_accrued_interest,
    get_accrued_interest,
    compute_add_liquidity,
    compute_increase_liquidity,
    compute_decrease_liquidity,
    compute_remove_liquidity,
    compute_withdraw_interest,
    compute_transfer_position,
)

# Loans
from .loan import (
    LoanInfo,
    LOAN_PHASE_BORROWER_GRACE,
    LOAN_PHASE_COLLECTOR_GRACE,
    LOAN_PHASE_PUBLIC,
    LOAN_PHASE_RETURNED,
    loan_receipt_transfer_rule,
    load_loan,
    loan_phase,
    check_return_authorization,
    calculate_borrow_estimate,
    calculate_reborrow_estimate,
    compute_borrow,
    compute_reborrow,
    compute_return_loan,
    compute_transfer_loan,
)

__all__ = [
    # Pool
    'PoolState', 'create_pool_unit', 'load_pool', 'pool_symbol', 'position_symbol',
    'loan_symbol', 'payment_token_index', 'require_payment_token',
    'compute_enable_payment_token', 'compute_disable_payment_token', 'compute_shutdown',
    # Services
    'Service', 'create_power_token_unit', 'power_token_transfer_rule', 'load_service',
    'require_service', 'wrap_wallet', 'compute_register_service', 'compute_wrap', 'compute_unwrap',
    # Liquidity
    'LiquidityInfo', 'shares_for_deposit', 'liquidity_of', 'shares_to_burn', 'owner_of',
    'load_position', 'calculate_accrued_interest', 'get_accrued_interest',
    'compute_add_liquidity', 'compute_increase_liquidity', 'compute_decrease_liquidity',
    'compute_remove_liquidity', 'compute_withdraw_interest', 'compute_transfer_position',
    # Loans
    'LoanInfo', 'LOAN_PHASE_BORROWER_GRACE', 'LOAN_PHASE_COLLECTOR_GRACE', 'LOAN_PHASE_PUBLIC',
    'LOAN_PHASE_RETURNED', 'loan_receipt_transfer_rule', 'load_loan', 'loan_phase',
    'check_return_authorization', 'calculate_borrow_estimate', 'calculate_reborrow_estimate',
    'compute_borrow', 'compute_reborrow', 'compute_return_loan', 'compute_transfer_loan',
]
