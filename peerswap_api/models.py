"""
Pydantic models for API requests and responses.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from peerswap_relayer.models import ExecutionData


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Health
# ============================================================================

class HealthResponse(ApiModel):
    """Service health."""

    ok: bool = Field(..., description="Whether the relayer is running")
    version: str = Field(..., description="API version")
    swaps: int = Field(..., description="Number of tracked swaps")
    relayer_address: Optional[str] = Field(None, description="Signing address, if configured")


# ============================================================================
# Swaps
# ============================================================================

class CreateSwapRequest(ApiModel):
    """Register a swap announced by a client."""

    chain_key: str = Field(..., description="Chain the factory was queried on (sepolia, baseSepolia)")
    factory_address: str = Field(..., description="Escrow factory address (0x...)")
    execution_data: dict[str, Any] = Field(
        ..., description="Execution data, camelCase with integers as decimal strings"
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "chainKey": "sepolia",
                    "factoryAddress": "0xA26D2Ee1d536b0E17240c8c32D7e894578e21148",
                    "executionData": {
                        "orderHash": "0x...",
                        "hashlock": "0x...",
                        "asker": "0x...",
                        "fullfiller": "0x0000000000000000000000000000000000000000",
                        "srcToken": "0x...",
                        "dstToken": "0x...",
                        "srcChainId": "11155111",
                        "dstChainId": "84532",
                        "askerAmount": "1000000000000000",
                        "fullfillerAmount": "1000000000000000",
                        "platformFee": "0",
                        "feeCollector": "0x...",
                        "timelocks": "0",
                        "parameters": "0x",
                    },
                }
            ]
        },
    )

    @field_validator("execution_data")
    @classmethod
    def _validate_execution_data(cls, value: dict[str, Any]) -> dict[str, Any]:
        try:
            ExecutionData.from_json(value)
        except TypeError as e:
            raise ValueError(f"invalid executionData: {e}") from e
        return value

    def to_execution_data(self) -> ExecutionData:
        return ExecutionData.from_json(self.execution_data)


class CreateSwapResponse(ApiModel):
    ok: bool
    src_escrow: Optional[str] = None
    dst_escrow: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Claim
# ============================================================================

class ClaimRequest(ApiModel):
    """Asker hands the swap secret to the relayer."""

    secret: str = Field(..., description="32-byte secret (0x...)")
    hashlock: str = Field(..., description="keccak256 of the secret (0x...)")
    user_address: str = Field(..., description="Asker address (0x...)")


class ClaimResponse(ApiModel):
    success: bool
    message: str


# ============================================================================
# Status
# ============================================================================

class SwapStatusResponse(ApiModel):
    hashlock: str
    src_escrow: str
    dst_escrow: str
    src_deployed: bool
    dst_deployed: bool
    both_deployed: bool
    can_claim: bool
    status: str


class CheckDeploymentsResponse(ApiModel):
    success: bool
    message: str
    results: list[dict[str, Any]] = Field(default_factory=list)


class CheckRelayerResponse(ApiModel):
    success: bool
    relayers: list[dict[str, Any]] = Field(default_factory=list)
