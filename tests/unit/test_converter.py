"""
test_converter.py - Unit tests for StaticRateConverter

Tests:
- Identity conversion
- Explicit and inverse rates
- Flooring of results
- Missing pairs and invalid rates
"""

import pytest
from decimal import Decimal

from rentpool import Converter, StaticRateConverter, ValidationError, ErrorCode


class TestStaticRateConverter:

    def test_protocol(self):
        assert isinstance(StaticRateConverter(), Converter)

    def test_identity(self):
        converter = StaticRateConverter()
        assert converter.estimate_convert("TST", 12345, "TST") == 12345
        assert converter.rate("TST", "TST") == Decimal(1)

    def test_explicit_rate(self):
        converter = StaticRateConverter({("USDC", "TST"): Decimal(2)})
        assert converter.estimate_convert("USDC", 10, "TST") == 20

    def test_inverse_rate(self):
        converter = StaticRateConverter({("TST", "USDC"): Decimal("0.5")})
        assert converter.rate("USDC", "TST") == Decimal(2)
        assert converter.estimate_convert("USDC", 7, "TST") == 14

    def test_result_is_floored(self):
        converter = StaticRateConverter({("TST", "USDC"): Decimal("0.35")})
        assert converter.estimate_convert("TST", 10, "USDC") == 3

    def test_convert_settles_at_quote(self):
        converter = StaticRateConverter({("TST", "USDC"): Decimal("0.35")})
        assert converter.convert("TST", 1000, "USDC") == converter.estimate_convert("TST", 1000, "USDC")

    def test_set_rate_accepts_strings(self):
        converter = StaticRateConverter()
        converter.set_rate("TST", "USDC", "1.5")
        assert converter.rate("TST", "USDC") == Decimal("1.5")

    def test_missing_pair_raises(self):
        with pytest.raises(ValidationError) as exc:
            StaticRateConverter().estimate_convert("TST", 1, "USDC")
        assert exc.value.code == ErrorCode.UNSUPPORTED_CONVERSION

    @pytest.mark.parametrize("rate", [Decimal(0), Decimal(-1)])
    def test_non_positive_rate_raises(self, rate):
        with pytest.raises(ValidationError):
            StaticRateConverter({("TST", "USDC"): rate})

    def test_custom_wallet(self):
        assert StaticRateConverter(wallet="dex").wallet == "dex"
