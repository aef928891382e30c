"""
Typed on-chain events and the follow-up actions the reconciler schedules.
"""

from dataclasses import dataclass
from typing import Union

from .models import ExecutionData


@dataclass(frozen=True)
class EventMeta:
    """Where an event was observed."""

    chain_key: str
    block_number: int
    tx_hash: str
    log_index: int


@dataclass(frozen=True)
class SrcEscrowCreated:
    meta: EventMeta
    execution_data: ExecutionData

    @property
    def hashlock(self) -> str:
        return self.execution_data.hashlock


@dataclass(frozen=True)
class DstEscrowCreated:
    meta: EventMeta
    escrow: str
    hashlock: str
    asker: str


@dataclass(frozen=True)
class FulfillerSet:
    meta: EventMeta
    src_escrow: str
    fulfiller: str


@dataclass(frozen=True)
class DstSecretRevealed:
    meta: EventMeta
    secret: str
    hashlock: str


SwapEvent = Union[SrcEscrowCreated, DstEscrowCreated, FulfillerSet, DstSecretRevealed]


@dataclass(frozen=True)
class SetFulfiller:
    """Register the relayer as fulfiller of a source escrow."""

    chain_key: str
    src_escrow: str
    hashlock: str


@dataclass(frozen=True)
class Withdraw:
    """Withdraw a source escrow using a secret revealed on the destination."""

    chain_key: str
    src_escrow: str
    secret: str
    hashlock: str
    execution_data: ExecutionData
    reveal_tx_hash: str = ""


Action = Union[SetFulfiller, Withdraw]
