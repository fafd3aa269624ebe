"""
rentpool - Utility-rental liquidity pool on a double-entry ledger

Liquidity providers pool a base asset; borrowers rent power tokens against
the pool for a bounded duration, paying a fee that rises convexly with
utilization.

Usage:
    from datetime import datetime, timedelta
    from rentpool import Ledger, Enterprise, EnterpriseConfig, token, base_rate

    ledger = Ledger("main", datetime(2024, 1, 1), verbose=False)
    ledger.register_unit(token("TST", "Test Token"))
    for wallet in ("admin", "lender", "borrower"):
        ledger.register_wallet(wallet)
    # fund lender and borrower with TST from SYSTEM_WALLET ...

    enterprise = Enterprise(ledger, EnterpriseConfig("main", "TST", "admin"))
    enterprise.register_service(
        "admin", "IQ Power Test", "IQPT",
        base_rate(100 * 10**18, timedelta(days=1), 3 * 10**18), "TST",
        300, timedelta(hours=12), timedelta(days=60), 10**18, timedelta(days=1),
    )
    position = enterprise.add_liquidity("lender", 1000 * 10**18)
    loan = enterprise.borrow("borrower", "IQPT", "TST", 100 * 10**18,
                             timedelta(days=1), max_payment=10 * 10**18)
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InsufficientFunds,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    EnterpriseError,
    ValidationError,
    InsufficientLiquidity,
    Unauthorized,
    InvalidState,
    SlippageExceeded,
    ErrorKind,
    ErrorCode,
    token,
    to_quantity,
    to_amount,
    SYSTEM_WALLET,
    BASIS_POINTS,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_POOL,
    UNIT_TYPE_INTEREST_RECEIPT,
    UNIT_TYPE_LOAN_RECEIPT,
    UNIT_TYPE_POWER_TOKEN,
)

from .ledger import Ledger
from .converter import Converter, StaticRateConverter
from .config import EnterpriseConfig
from .reserve_stream import (
    ReserveState,
    StreamingSchedule,
    STREAMING_LINEAR,
    STREAMING_HALF_LIFE,
    calculate_streaming_reserve,
    calculate_reserve,
    calculate_available_reserve,
    increase_streaming_target,
    flush_streaming_reserve,
    vest_all,
)
from .pricing_curve import (
    POLE,
    SLOPE,
    LoanEstimate,
    base_rate,
    curve_factor,
    utilization_integral,
    calculate_interest,
    calculate_loan_estimate,
    reference_loan_cost,
)
from .settlement import Settlement, calculate_settlement, settlement_moves
from .events import AuditEvent
from .enterprise import Enterprise, EnterpriseInfo

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin',
    'OriginType', 'build_transaction', 'empty_pending_transaction', 'Unit',
    'UnitStateChange', 'ExecuteResult', 'token', 'to_quantity', 'to_amount',
    'SYSTEM_WALLET', 'BASIS_POINTS', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_POOL',
    'UNIT_TYPE_INTEREST_RECEIPT', 'UNIT_TYPE_LOAN_RECEIPT', 'UNIT_TYPE_POWER_TOKEN',
    # Errors
    'LedgerError', 'InsufficientFunds', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered',
    'EnterpriseError', 'ValidationError', 'InsufficientLiquidity', 'Unauthorized',
    'InvalidState', 'SlippageExceeded', 'ErrorKind', 'ErrorCode',
    # Ledger and pool
    'Ledger', 'Converter', 'StaticRateConverter', 'EnterpriseConfig',
    'Enterprise', 'EnterpriseInfo', 'AuditEvent',
    # Reserve stream
    'ReserveState', 'StreamingSchedule', 'STREAMING_LINEAR', 'STREAMING_HALF_LIFE',
    'calculate_streaming_reserve', 'calculate_reserve', 'calculate_available_reserve',
    'increase_streaming_target', 'flush_streaming_reserve', 'vest_all',
    # Pricing
    'POLE', 'SLOPE', 'LoanEstimate', 'base_rate', 'curve_factor', 'utilization_integral',
    'calculate_interest', 'calculate_loan_estimate', 'reference_loan_cost',
    # Settlement
    'Settlement', 'calculate_settlement', 'settlement_moves',
]

__version__ = '1.0.0'
