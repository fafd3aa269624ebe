"""
converter.py - Price conversion between pool assets

Provides the conversion capability used when a loan is priced in one asset
and paid in another.

Classes:
- Converter: Protocol defining the conversion interface
- StaticRateConverter: Fixed exchange rates, settled through a liquidity wallet

Conversions are pure functions of (source, amount, target). Amounts are
integer base units and results are floored.
"""

from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional, Tuple, Protocol, runtime_checkable

from .core import ValidationError, ErrorCode


@runtime_checkable
class Converter(Protocol):
    """
    Protocol for conversion sources.

    `wallet` is the ledger wallet that receives the source asset and pays
    out the target asset when a conversion settles.
    """
    wallet: str

    def estimate_convert(self, source: str, amount: int, target: str) -> int:
        """Quote how much `target` is obtained for `amount` of `source`."""
        ...

    def convert(self, source: str, amount: int, target: str) -> int:
        """Amount of `target` delivered when `amount` of `source` is converted."""
        ...


class StaticRateConverter:
    """
    Converter with static rates (time-independent).

    A rate for (source, target) means: one base unit of source is worth
    `rate` base units of target. The reverse pair uses the inverse rate
    unless it was set explicitly. Converting an asset to itself is identity.
    """

    def __init__(
        self,
        rates: Optional[Dict[Tuple[str, str], Decimal]] = None,
        wallet: str = "converter",
    ):
        """
        Initialize with a static rate map.

        Args:
            rates: Dictionary mapping (source, target) pairs to rates
            wallet: Wallet holding the converter's liquidity
        """
        self.wallet = wallet
        self.rates: Dict[Tuple[str, str], Decimal] = {}
        for pair, rate in (rates or {}).items():
            self.set_rate(pair[0], pair[1], rate)

    def set_rate(self, source: str, target: str, rate: Decimal):
        """Set the rate of one base unit of source in base units of target."""
        if not isinstance(rate, Decimal):
            rate = Decimal(str(rate))
        if rate <= 0:
            raise ValidationError(ErrorCode.UNSUPPORTED_CONVERSION,
                                  f"rate {source}->{target} must be positive, got {rate}")
        self.rates[(source, target)] = rate

    def rate(self, source: str, target: str) -> Decimal:
        """
        Resolve the rate for a pair.

        Raises:
            ValidationError: If neither the pair nor its reverse has a rate
        """
        if source == target:
            return Decimal(1)
        if (source, target) in self.rates:
            return self.rates[(source, target)]
        if (target, source) in self.rates:
            return Decimal(1) / self.rates[(target, source)]
        raise ValidationError(ErrorCode.UNSUPPORTED_CONVERSION,
                              f"no rate for {source} -> {target}")

    def estimate_convert(self, source: str, amount: int, target: str) -> int:
        """Floor of amount * rate (identity for source == target)."""
        if source == target:
            return int(amount)
        value = Decimal(int(amount)) * self.rate(source, target)
        return int(value.to_integral_value(rounding=ROUND_DOWN))

    def convert(self, source: str, amount: int, target: str) -> int:
        """Static rates settle at the quoted amount."""
        return self.estimate_convert(source, amount, target)

    def __repr__(self):
        return f"StaticRateConverter({len(self.rates)} rates, wallet={self.wallet})"
