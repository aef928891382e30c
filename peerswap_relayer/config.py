"""
Configuration management for the PeerSwap relayer.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


SEPOLIA = "sepolia"
BASE_SEPOLIA = "baseSepolia"


def normalize_private_key(value: Optional[str]) -> Optional[str]:
    """Add the 0x prefix and reject anything that is not 32 bytes of hex."""
    if not value:
        return None
    key = value.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        return None
    try:
        int(key, 16)
    except ValueError:
        return None
    return key


class Settings(BaseSettings):
    """
    Environment-based settings.

    All settings can be overridden via environment variables or a .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Signing account (same key signs on every watched chain)
    relayer_private_key: Optional[str] = Field(
        default=None,
        description="Relayer private key, hex with or without 0x prefix",
    )

    # Sepolia
    sepolia_rpc_url: str = "https://ethereum-sepolia-rpc.publicnode.com"
    sepolia_chain_id: int = 11155111
    sepolia_factory: str = "0xA26D2Ee1d536b0E17240c8c32D7e894578e21148"

    # Base Sepolia
    base_sepolia_rpc_url: str = "https://base-sepolia-rpc.publicnode.com"
    base_sepolia_chain_id: int = 84532
    base_sepolia_factory: str = "0x1F71948C09EA1702392d463174733d394621Ae17"

    # Poller
    poll_interval_seconds: float = 10.0
    retry_backoff_seconds: float = 10.0
    max_block_range: int = 2000
    backfill_on_restart: bool = False
    max_backfill_blocks: int = 5000

    # Actions
    fulfiller_verify_delay_seconds: float = 5.0
    tx_confirmation_timeout_seconds: float = 60.0
    tx_gas_limit: int = 500_000
    deployment_check_interval_seconds: float = 30.0
    set_fulfiller_attempts: int = 3
    source_withdraw_attempts: int = 3
    source_withdraw_backoff_seconds: float = 5.0

    # Cursor database
    database_url: str = "sqlite:///./peerswap_relayer.db"

    # HTTP API
    host: str = "127.0.0.1"
    port: int = Field(default=8787, validation_alias="PORT")
    allowed_origins: list[str] = Field(
        default=[
            "http://localhost:3000",
            "https://peerswap.vercel.app",
        ],
        description="CORS allowed origins",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Token required via X-API-Key on operator endpoints",
    )

    @field_validator("relayer_private_key", mode="before")
    @classmethod
    def _normalize_key(cls, value: Optional[str]) -> Optional[str]:
        return normalize_private_key(value)

    def chains(self) -> list["ChainConfig"]:
        """The two watched chains."""
        return [
            ChainConfig(
                key=SEPOLIA,
                chain_id=self.sepolia_chain_id,
                rpc_url=self.sepolia_rpc_url,
                factory_address=self.sepolia_factory,
            ),
            ChainConfig(
                key=BASE_SEPOLIA,
                chain_id=self.base_sepolia_chain_id,
                rpc_url=self.base_sepolia_rpc_url,
                factory_address=self.base_sepolia_factory,
            ),
        ]


@dataclass
class ChainConfig:
    """A single watched chain."""

    key: str
    chain_id: int
    rpc_url: str
    factory_address: str


@dataclass
class RelayerConfig:
    """Full relayer configuration."""

    settings: Settings
    chains: list[ChainConfig] = field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayerConfig":
        return cls(settings=settings, chains=settings.chains())

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "RelayerConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls.from_settings(settings)

    @property
    def chain_keys(self) -> list[str]:
        return [chain.key for chain in self.chains]

    def chain(self, key: str) -> ChainConfig:
        for chain in self.chains:
            if chain.key == key:
                return chain
        raise ConfigurationError(f"Unknown chain key: {key}")

    def chain_for_id(self, chain_id: int) -> ChainConfig:
        """Resolve the watched chain carrying a numeric chain id."""
        for chain in self.chains:
            if chain.chain_id == int(chain_id):
                return chain
        raise ConfigurationError(f"Chain id {chain_id} is not watched by this relayer")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
