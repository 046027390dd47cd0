#!/usr/bin/env python3
"""Tests for fee estimation."""

import pytest
from web3 import Web3

from src.reward_relayer.fee_estimator import (
    DEFAULT_MAX_FEE_PER_GAS,
    DEFAULT_PRIORITY_FEE_PER_GAS,
    estimate_fees,
    parse_priority_tier,
)
from src.reward_relayer.models import NetworkFeeData, PriorityTier


def gwei(value) -> int:
    return Web3.to_wei(value, "gwei")


class TestEstimateFees:
    """Tests for estimate_fees."""

    def test_medium_tier_applies_multipliers(self):
        """Network fees above the floors are scaled by the tier multipliers."""
        fees = NetworkFeeData(max_fee_per_gas=gwei(100), max_priority_fee_per_gas=gwei(4))

        quote = estimate_fees(fees, PriorityTier.MEDIUM)

        assert quote.max_fee_per_gas == gwei(150)
        assert quote.max_priority_fee_per_gas == gwei(6)

    def test_high_tier_applies_multipliers(self):
        fees = NetworkFeeData(max_fee_per_gas=gwei(100), max_priority_fee_per_gas=gwei(10))

        quote = estimate_fees(fees, PriorityTier.HIGH)

        assert quote.max_fee_per_gas == gwei(250)
        assert quote.max_priority_fee_per_gas == gwei(20)

    def test_low_fees_are_raised_to_floor(self):
        """Cheap network data never yields a quote below the tier floor."""
        fees = NetworkFeeData(max_fee_per_gas=gwei(1), max_priority_fee_per_gas=gwei("0.1"))

        assert estimate_fees(fees, PriorityTier.LOW).max_fee_per_gas == gwei(60)
        assert estimate_fees(fees, PriorityTier.LOW).max_priority_fee_per_gas == gwei(2)
        assert estimate_fees(fees, PriorityTier.MEDIUM).max_fee_per_gas == gwei(90)
        assert estimate_fees(fees, PriorityTier.MEDIUM).max_priority_fee_per_gas == gwei(3)
        assert estimate_fees(fees, PriorityTier.HIGH).max_fee_per_gas == gwei(120)
        assert estimate_fees(fees, PriorityTier.HIGH).max_priority_fee_per_gas == gwei(4)

    def test_missing_data_uses_defaults(self):
        """Absent network data falls back to 50 gwei / 1.5 gwei before scaling."""
        quote = estimate_fees(None, PriorityTier.HIGH)

        assert quote.max_fee_per_gas == max(DEFAULT_MAX_FEE_PER_GAS * 250 // 100, gwei(120))
        assert quote.max_priority_fee_per_gas == max(DEFAULT_PRIORITY_FEE_PER_GAS * 2, gwei(4))

    def test_partial_data_uses_default_for_missing_component(self):
        fees = NetworkFeeData(max_fee_per_gas=gwei(200), max_priority_fee_per_gas=None)

        quote = estimate_fees(fees, PriorityTier.LOW)

        assert quote.max_fee_per_gas == gwei(240)
        assert quote.max_priority_fee_per_gas == gwei(2)

    def test_is_deterministic(self):
        fees = NetworkFeeData(max_fee_per_gas=gwei(77), max_priority_fee_per_gas=gwei(3))

        assert estimate_fees(fees, PriorityTier.MEDIUM) == estimate_fees(fees, PriorityTier.MEDIUM)

    def test_max_fee_never_below_priority_fee(self):
        """A node reporting only a large priority fee still yields a valid quote."""
        fees = NetworkFeeData(max_fee_per_gas=None, max_priority_fee_per_gas=gwei(200))

        quote = estimate_fees(fees, PriorityTier.MEDIUM)

        assert quote.max_priority_fee_per_gas == gwei(300)
        assert quote.max_fee_per_gas == gwei(300)


class TestParsePriorityTier:
    """Tests for parse_priority_tier."""

    @pytest.mark.parametrize("value,expected", [
        ("low", PriorityTier.LOW),
        ("MEDIUM", PriorityTier.MEDIUM),
        (" high ", PriorityTier.HIGH),
        ("slow", PriorityTier.LOW),
        ("fast", PriorityTier.HIGH),
    ])
    def test_known_names(self, value, expected):
        assert parse_priority_tier(value) is expected

    def test_unknown_name(self):
        with pytest.raises(ValueError, match="Unknown gas priority"):
            parse_priority_tier("urgent")
