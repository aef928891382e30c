"""
Entry point for running the relayer as a module.

Usage:
    python -m peerswap_relayer
"""

from peerswap_relayer.cli import main

if __name__ == "__main__":
    main()
