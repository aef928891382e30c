"""
Tests for settings and chain configuration.
"""

import pytest

from peerswap_relayer.config import (
    BASE_SEPOLIA,
    SEPOLIA,
    RelayerConfig,
    Settings,
    normalize_private_key,
)
from peerswap_relayer.errors import ConfigurationError


class TestPrivateKey:
    """RELAYER_PRIVATE_KEY normalization."""

    def test_adds_prefix(self) -> None:
        assert normalize_private_key("11" * 32) == "0x" + "11" * 32

    def test_keeps_prefixed_key(self) -> None:
        assert normalize_private_key("0x" + "ab" * 32) == "0x" + "ab" * 32

    def test_strips_whitespace(self) -> None:
        assert normalize_private_key("  0x" + "ab" * 32 + "\n") == "0x" + "ab" * 32

    @pytest.mark.parametrize("value", [None, "", "0x1234", "zz" * 32])
    def test_invalid_becomes_none(self, value) -> None:
        """A malformed key disables signing rather than failing startup."""
        assert normalize_private_key(value) is None

    def test_settings_validator(self) -> None:
        settings = Settings(_env_file=None, relayer_private_key="22" * 32)
        assert settings.relayer_private_key == "0x" + "22" * 32


class TestEnvironment:
    def test_reads_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("SEPOLIA_RPC_URL", "http://localhost:8545")
        monkeypatch.setenv("MAX_BLOCK_RANGE", "500")
        monkeypatch.setenv("BACKFILL_ON_RESTART", "true")
        monkeypatch.setenv("PORT", "9000")

        settings = Settings(_env_file=None)

        assert settings.sepolia_rpc_url == "http://localhost:8545"
        assert settings.max_block_range == 500
        assert settings.backfill_on_restart is True
        assert settings.port == 9000

    def test_reads_env_file(self, tmp_path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("BASE_SEPOLIA_FACTORY=0x" + "fa" * 20 + "\nAPI_TOKEN=t0ken\n")

        config = RelayerConfig.from_env(env_file)

        assert config.chain(BASE_SEPOLIA).factory_address == "0x" + "fa" * 20
        assert config.settings.api_token == "t0ken"

    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.poll_interval_seconds == 10.0
        assert settings.max_block_range == 2000
        assert settings.backfill_on_restart is False


class TestChains:
    def test_two_chains_in_order(self, config) -> None:
        assert config.chain_keys == [SEPOLIA, BASE_SEPOLIA]
        assert config.chain(SEPOLIA).chain_id == 11155111
        assert config.chain(BASE_SEPOLIA).chain_id == 84532

    def test_unknown_key(self, config) -> None:
        with pytest.raises(ConfigurationError):
            config.chain("mainnet")

    def test_chain_for_id_accepts_strings(self, config) -> None:
        """Chain ids arrive as decimal strings from clients."""
        assert config.chain_for_id("84532").key == BASE_SEPOLIA

    def test_chain_for_unwatched_id(self, config) -> None:
        with pytest.raises(ConfigurationError):
            config.chain_for_id(1)
