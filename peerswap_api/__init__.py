"""
PeerSwap API - HTTP surface of the PeerSwap relayer.

Provides REST endpoints for:
- Registering swaps
- Submitting claim secrets
- Swap and deployment status
- Health checks
"""

__version__ = "0.1.0"
