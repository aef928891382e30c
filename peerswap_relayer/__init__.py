"""
PeerSwap Relayer

Watches the PeerSwap escrow factories on Sepolia and Base Sepolia, tracks
cross-chain HTLC swaps, registers itself as fulfiller once both escrows are
deployed, and completes withdrawals with the secret revealed by the asker.

Usage:
    # Run pollers and HTTP API
    peerswap-relayer run

    # Pollers only
    peerswap-relayer run --no-api

    # Verify the factories point at this relayer
    peerswap-relayer check-relayer
"""

__version__ = "0.1.0"

from .config import ChainConfig, RelayerConfig, Settings, get_settings
from .db import CursorDatabase
from .evm import ChainClient
from .models import ExecutionData, SwapRecord, SwapStatus
from .relayer import PeerSwapRelayer
from .store import PendingClaimStore, SwapRegistry

__all__ = [
    "__version__",
    "ChainConfig",
    "RelayerConfig",
    "Settings",
    "get_settings",
    "CursorDatabase",
    "ChainClient",
    "ExecutionData",
    "SwapRecord",
    "SwapStatus",
    "PeerSwapRelayer",
    "PendingClaimStore",
    "SwapRegistry",
]
