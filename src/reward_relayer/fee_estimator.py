"""
Fee estimation for relayer submissions.

Turns the node's fee market data into EIP-1559 fee parameters for a
priority tier. Every tier applies fixed multipliers and then raises the
result to a tier floor, so under-priced network data never yields an
under-priced submission.
"""

import logging
from dataclasses import dataclass

from web3 import Web3

from .models import FeeQuote, NetworkFeeData, PriorityTier

logger = logging.getLogger(__name__)

# Substituted when the node does not report fee data
DEFAULT_MAX_FEE_PER_GAS: int = Web3.to_wei(50, "gwei")
DEFAULT_PRIORITY_FEE_PER_GAS: int = Web3.to_wei("1.5", "gwei")


@dataclass(frozen=True, slots=True)
class TierPolicy:
    """Multipliers (in percent) and floors (in wei) for one priority tier."""
    max_fee_percent: int
    priority_fee_percent: int
    min_max_fee: int
    min_priority_fee: int


TIER_POLICIES: dict[PriorityTier, TierPolicy] = {
    PriorityTier.LOW: TierPolicy(
        max_fee_percent=120,
        priority_fee_percent=100,
        min_max_fee=Web3.to_wei(60, "gwei"),
        min_priority_fee=Web3.to_wei(2, "gwei"),
    ),
    PriorityTier.MEDIUM: TierPolicy(
        max_fee_percent=150,
        priority_fee_percent=150,
        min_max_fee=Web3.to_wei(90, "gwei"),
        min_priority_fee=Web3.to_wei(3, "gwei"),
    ),
    PriorityTier.HIGH: TierPolicy(
        max_fee_percent=250,
        priority_fee_percent=200,
        min_max_fee=Web3.to_wei(120, "gwei"),
        min_priority_fee=Web3.to_wei(4, "gwei"),
    ),
}

_TIER_ALIASES: dict[str, PriorityTier] = {
    "slow": PriorityTier.LOW,
    "fast": PriorityTier.HIGH,
}


def parse_priority_tier(value: str) -> PriorityTier:
    """
    Parse a priority tier name from configuration.

    Accepts low/medium/high in any case, plus the slow/fast aliases.

    Raises:
        ValueError: If the name is not a known tier
    """
    name = value.strip().lower()
    if name in _TIER_ALIASES:
        return _TIER_ALIASES[name]
    try:
        return PriorityTier(name)
    except ValueError:
        raise ValueError(
            f"Unknown gas priority: {value}. Expected one of low, medium, high"
        ) from None


def estimate_fees(network_fees: NetworkFeeData | None, tier: PriorityTier) -> FeeQuote:
    """
    Compute submission fees for a priority tier.

    Args:
        network_fees: Fee data reported by the node, or None if unavailable
        tier: Priority tier to price for

    Returns:
        FeeQuote with both components at or above the tier floors and
        max_fee_per_gas never below max_priority_fee_per_gas
    """
    policy = TIER_POLICIES[tier]

    base_fee = DEFAULT_MAX_FEE_PER_GAS
    priority_fee = DEFAULT_PRIORITY_FEE_PER_GAS
    if network_fees is not None:
        if network_fees.max_fee_per_gas:
            base_fee = network_fees.max_fee_per_gas
        if network_fees.max_priority_fee_per_gas:
            priority_fee = network_fees.max_priority_fee_per_gas

    max_fee = max(base_fee * policy.max_fee_percent // 100, policy.min_max_fee)
    max_priority_fee = max(
        priority_fee * policy.priority_fee_percent // 100, policy.min_priority_fee
    )
    # The node rejects a priority fee above the max fee
    max_fee = max(max_fee, max_priority_fee)

    logger.debug(
        f"Using {tier.value.upper()} priority: "
        f"maxFeePerGas={Web3.from_wei(max_fee, 'gwei')} gwei, "
        f"maxPriorityFeePerGas={Web3.from_wei(max_priority_fee, 'gwei')} gwei"
    )
    return FeeQuote(max_fee_per_gas=max_fee, max_priority_fee_per_gas=max_priority_fee)
