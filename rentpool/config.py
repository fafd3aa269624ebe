"""
config.py - Enterprise configuration

EnterpriseConfig is the pool's term sheet: who owns it, which asset it
pools, where fees go and how the loan grace windows are sized. Inputs are
normalised once in __post_init__ so every later read sees a consistent,
validated record.

Example:
    config = EnterpriseConfig(name="main", pool_asset="TST", owner="admin")
    config.collector          # "admin"
    config.vault              # "main_vault"
    config.schedule           # StreamingSchedule(period=8h, kind="linear")
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Optional

from .core import ValidationError, ErrorCode, BASIS_POINTS, SYSTEM_WALLET
from .converter import Converter, StaticRateConverter
from .reserve_stream import StreamingSchedule, STREAMING_LINEAR


DEFAULT_STREAMING_PERIOD = timedelta(hours=8)
DEFAULT_BORROWER_RETURN_GRACE_PERIOD = timedelta(hours=12)
DEFAULT_COLLECT_GRACE_PERIOD = timedelta(days=1)
DEFAULT_MAX_SERVICES = 256

# Fields update_config() may change on a live pool
UPDATABLE_FIELDS = frozenset({
    "collector",
    "vault",
    "converter",
    "borrower_loan_return_grace_period",
    "enterprise_loan_collect_grace_period",
    "gc_fee_percent",
})


@dataclass(frozen=True, slots=True)
class EnterpriseConfig:
    """
    Immutable pool configuration.

    Attributes:
        name: Pool identifier, used in wallet and unit symbols
        pool_asset: Symbol of the pooled base asset
        owner: Identity allowed to register services and shut down
        collector: Identity allowed to return loans after the borrower window
        vault: Wallet receiving service fees
        pool_wallet: Wallet holding the pool's assets
        converter: Price conversion between payment assets and the pool asset
        streaming_period: Vesting period of earned interest
        streaming_schedule: "linear" or "half_life"
        borrower_loan_return_grace_period: Window after maturity reserved to the borrower
        enterprise_loan_collect_grace_period: Window after maturity closed to the public
        gc_fee_percent: Share of interest (basis points) taken as gc fee
        max_services: Size of the service catalog
    """
    name: str
    pool_asset: str
    owner: str
    collector: Optional[str] = None
    vault: Optional[str] = None
    pool_wallet: Optional[str] = None
    converter: Optional[Converter] = field(default=None, compare=False)
    streaming_period: timedelta = DEFAULT_STREAMING_PERIOD
    streaming_schedule: str = STREAMING_LINEAR
    borrower_loan_return_grace_period: timedelta = DEFAULT_BORROWER_RETURN_GRACE_PERIOD
    enterprise_loan_collect_grace_period: timedelta = DEFAULT_COLLECT_GRACE_PERIOD
    gc_fee_percent: int = 0
    max_services: int = DEFAULT_MAX_SERVICES

    def __post_init__(self):
        for attr in ("name", "pool_asset", "owner"):
            value = getattr(self, attr)
            if not value or not str(value).strip():
                raise ValidationError(ErrorCode.INVALID_CONFIG, f"{attr} cannot be empty")
        if self.owner == SYSTEM_WALLET:
            raise ValidationError(ErrorCode.INVALID_IDENTITY, "owner cannot be the system wallet")

        if self.collector is None:
            object.__setattr__(self, "collector", self.owner)
        if self.vault is None:
            object.__setattr__(self, "vault", f"{self.name}_vault")
        if self.pool_wallet is None:
            object.__setattr__(self, "pool_wallet", f"{self.name}_pool")
        if self.converter is None:
            object.__setattr__(self, "converter", StaticRateConverter())

        if SYSTEM_WALLET in (self.collector, self.vault, self.pool_wallet):
            raise ValidationError(ErrorCode.INVALID_IDENTITY,
                                  "collector, vault and pool wallet cannot be the system wallet")
        if self.vault == self.pool_wallet:
            raise ValidationError(ErrorCode.INVALID_CONFIG, "vault and pool wallet must differ")

        if self.borrower_loan_return_grace_period < timedelta(0):
            raise ValidationError(ErrorCode.INVALID_CONFIG, "borrower grace period cannot be negative")
        if self.enterprise_loan_collect_grace_period < self.borrower_loan_return_grace_period:
            raise ValidationError(
                ErrorCode.INVALID_CONFIG,
                "collect grace period must not be shorter than the borrower grace period",
            )
        if not 0 <= self.gc_fee_percent <= BASIS_POINTS:
            raise ValidationError(ErrorCode.INVALID_CONFIG,
                                  f"gc_fee_percent must be in [0, {BASIS_POINTS}], got {self.gc_fee_percent}")
        if self.max_services <= 0:
            raise ValidationError(ErrorCode.INVALID_CONFIG, "max_services must be positive")

        # Raises on an unknown schedule or non-positive period
        StreamingSchedule(self.streaming_period, self.streaming_schedule)

    @property
    def schedule(self) -> StreamingSchedule:
        return StreamingSchedule(self.streaming_period, self.streaming_schedule)

    def updated(self, **changes: Any) -> EnterpriseConfig:
        """
        Return a copy with `changes` applied and re-validated.

        Raises:
            ValidationError: unknown or immutable field, or invalid value
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(ErrorCode.INVALID_CONFIG,
                                  f"cannot update fields: {', '.join(sorted(unknown))}")
        return replace(self, **changes)
