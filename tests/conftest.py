"""
Shared fixtures: settings, fake chain clients, registry and relayer.
"""

import pytest

from peerswap_relayer.config import BASE_SEPOLIA, SEPOLIA, RelayerConfig, Settings
from peerswap_relayer.relayer import PeerSwapRelayer
from peerswap_relayer.store import PendingClaimStore, SwapRegistry

from fakes import RELAYER_KEY, FakeChainClient


@pytest.fixture
def settings() -> Settings:
    """Settings with every delay collapsed so tests never sleep."""
    return Settings(
        _env_file=None,
        relayer_private_key=RELAYER_KEY,
        poll_interval_seconds=0,
        retry_backoff_seconds=0,
        max_block_range=2000,
        fulfiller_verify_delay_seconds=0,
        tx_confirmation_timeout_seconds=1,
        deployment_check_interval_seconds=0,
        set_fulfiller_attempts=3,
        source_withdraw_attempts=3,
        source_withdraw_backoff_seconds=0,
        database_url="sqlite:///:memory:",
        api_token=None,
    )


@pytest.fixture
def config(settings: Settings) -> RelayerConfig:
    return RelayerConfig.from_settings(settings)


@pytest.fixture
def journal() -> list:
    """Transactions sent on any chain, in order."""
    return []


@pytest.fixture
def sepolia(config: RelayerConfig, journal: list) -> FakeChainClient:
    return FakeChainClient(config.chain(SEPOLIA), journal=journal)


@pytest.fixture
def base_sepolia(config: RelayerConfig, journal: list) -> FakeChainClient:
    return FakeChainClient(config.chain(BASE_SEPOLIA), journal=journal)


@pytest.fixture
def clients(sepolia: FakeChainClient, base_sepolia: FakeChainClient) -> dict:
    return {SEPOLIA: sepolia, BASE_SEPOLIA: base_sepolia}


@pytest.fixture
def registry() -> SwapRegistry:
    return SwapRegistry()


@pytest.fixture
def claims() -> PendingClaimStore:
    return PendingClaimStore()


@pytest.fixture
def relayer(config, registry, claims, clients) -> PeerSwapRelayer:
    return PeerSwapRelayer(config, registry=registry, claims=claims, clients=clients)
