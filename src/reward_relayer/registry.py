"""
Registry of relayer identities, their statistics and request queues.
"""

import asyncio
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field

from .models import RelayerIdentity, RelayerStats, TransferRequest


@dataclass(slots=True)
class RelayerEntry:
    """
    Everything the pool tracks for one relayer.

    The task is the relayer's only processor; while it is alive no other
    processor may be started for the same relayer.
    """
    identity: RelayerIdentity
    stats: RelayerStats
    queue: deque[TransferRequest] = field(default_factory=deque)
    task: asyncio.Task | None = None

    @property
    def address(self) -> str:
        return self.identity.address

    @property
    def index(self) -> int:
        return self.identity.index

    @property
    def is_processing(self) -> bool:
        return self.task is not None and not self.task.done()

    def append(self, request: TransferRequest) -> None:
        self.queue.append(request)
        self.stats.queue_length = len(self.queue)

    def pop_head(self) -> TransferRequest:
        request = self.queue.popleft()
        self.stats.queue_length = len(self.queue)
        return request


class RelayerRegistry:
    """Ordered mapping of relayer address to RelayerEntry."""

    def __init__(self) -> None:
        self._entries: dict[str, RelayerEntry] = {}

    def add(self, identity: RelayerIdentity, nonce: int = 0) -> RelayerEntry:
        """
        Register a relayer with zeroed statistics and an empty queue.

        Raises:
            ValueError: If the address is already registered
        """
        if identity.address in self._entries:
            raise ValueError(f"Relayer {identity.address} is already registered")
        entry = RelayerEntry(
            identity=identity,
            stats=RelayerStats(
                index=identity.index,
                address=identity.address,
                current_nonce=nonce
            )
        )
        self._entries[identity.address] = entry
        return entry

    def get(self, address: str) -> RelayerEntry | None:
        return self._entries.get(address)

    def by_index(self, index: int) -> RelayerEntry | None:
        """Look up a relayer by its pool index."""
        for entry in self._entries.values():
            if entry.index == index:
                return entry
        return None

    def active(self) -> list[RelayerEntry]:
        return [entry for entry in self._entries.values() if entry.stats.active]

    def shortest_queue(self) -> RelayerEntry | None:
        """
        Pick the active relayer with the fewest queued requests.

        Ties go to the relayer registered first. Returns None when no
        relayer is active.
        """
        best: RelayerEntry | None = None
        for entry in self.active():
            if best is None or len(entry.queue) < len(best.queue):
                best = entry
        return best

    def total_pending(self) -> int:
        return sum(len(entry.queue) for entry in self._entries.values())

    def __iter__(self) -> Iterator[RelayerEntry]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)
