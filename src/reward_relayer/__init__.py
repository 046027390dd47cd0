"""
Reward Relayer package.

Multi-wallet relay service that pays reward tokens from a treasury through
a pool of relayer accounts, one ordered queue per relayer.
"""

from .config import RelayerConfig
from .models import TransferRequest, TransferResult
from .relayer import RelayerService
from .relayer_pool import RelayerPool

__all__ = ["RelayerConfig", "RelayerService", "RelayerPool", "TransferRequest", "TransferResult"]
__version__ = "0.1.0"
