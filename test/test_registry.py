#!/usr/bin/env python3
"""Tests for the relayer registry."""

from decimal import Decimal

import pytest

from src.reward_relayer.models import TransferRequest
from src.reward_relayer.registry import RelayerRegistry

from conftest import RECIPIENT, make_identity


def fill(entry, count: int) -> None:
    for _ in range(count):
        entry.append(TransferRequest(recipient=RECIPIENT, amount=Decimal(1)))


@pytest.fixture
def registry() -> RelayerRegistry:
    registry = RelayerRegistry()
    for slot in range(1, 4):
        registry.add(make_identity(slot, index=slot - 1), nonce=slot * 10)
    return registry


class TestRelayerRegistry:
    """Tests for RelayerRegistry."""

    def test_add_initializes_stats(self, registry):
        entry = registry.by_index(1)

        assert entry.stats.current_nonce == 20
        assert entry.stats.total_sent == 0
        assert entry.stats.active
        assert not entry.queue
        assert not entry.is_processing

    def test_add_rejects_duplicate(self, registry):
        with pytest.raises(ValueError):
            registry.add(make_identity(1, index=5))

    def test_shortest_queue_picks_fewest_pending(self, registry):
        """Queue lengths [2, 0, 1] select the relayer at index 1."""
        fill(registry.by_index(0), 2)
        fill(registry.by_index(2), 1)

        assert registry.shortest_queue().index == 1

    def test_shortest_queue_ties_go_to_first(self, registry):
        fill(registry.by_index(0), 1)
        fill(registry.by_index(1), 1)
        fill(registry.by_index(2), 1)

        assert registry.shortest_queue().index == 0

    def test_shortest_queue_skips_inactive(self, registry):
        registry.by_index(0).stats.active = False

        assert registry.shortest_queue().index == 1

    def test_shortest_queue_none_when_all_inactive(self, registry):
        for entry in registry:
            entry.stats.active = False

        assert registry.shortest_queue() is None

    def test_queue_length_tracks_queue(self, registry):
        entry = registry.by_index(0)
        fill(entry, 3)
        assert entry.stats.queue_length == 3

        entry.pop_head()
        assert entry.stats.queue_length == 2
        assert registry.total_pending() == 2
