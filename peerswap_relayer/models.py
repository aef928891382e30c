"""
Swap domain models: execution data, swap records, pending claims, raw logs.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from eth_utils import keccak, to_bytes, to_checksum_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def normalize_hex(value: Any) -> str:
    """Lower-case 0x-prefixed hex from bytes, HexBytes or a hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).strip()
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return "0x" + text.lower()


def hex_to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return to_bytes(hexstr=normalize_hex(value))


def hashlock_of(secret: str) -> str:
    """keccak256 of the raw secret bytes, as lower-case hex."""
    return normalize_hex(keccak(hex_to_bytes(secret)))


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ExecutionData:
    """
    Parameters of one swap, mirroring the escrow contracts' execution data.

    Immutable once committed on-chain. ``hashlock`` is keccak256 of the
    32-byte secret and correlates both legs of the swap.
    """

    order_hash: str
    hashlock: str
    asker: str
    fulfiller: str
    src_token: str
    dst_token: str
    src_chain_id: int
    dst_chain_id: int
    asker_amount: int
    fulfiller_amount: int
    platform_fee: int
    fee_collector: str
    timelocks: int
    parameters: str = "0x"

    # camelCase wire names, in ABI order
    _WIRE = (
        ("order_hash", "orderHash"),
        ("hashlock", "hashlock"),
        ("asker", "asker"),
        ("fulfiller", "fullfiller"),
        ("src_token", "srcToken"),
        ("dst_token", "dstToken"),
        ("src_chain_id", "srcChainId"),
        ("dst_chain_id", "dstChainId"),
        ("asker_amount", "askerAmount"),
        ("fulfiller_amount", "fullfillerAmount"),
        ("platform_fee", "platformFee"),
        ("fee_collector", "feeCollector"),
        ("timelocks", "timelocks"),
        ("parameters", "parameters"),
    )
    _INTS = frozenset(
        {
            "src_chain_id",
            "dst_chain_id",
            "asker_amount",
            "fulfiller_amount",
            "platform_fee",
            "timelocks",
        }
    )
    _HEX = frozenset({"order_hash", "hashlock", "parameters"})

    @classmethod
    def _coerce(cls, attr: str, value: Any) -> Any:
        if attr in cls._INTS:
            return int(value)
        if attr in cls._HEX:
            return normalize_hex(value)
        return str(value)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ExecutionData":
        """
        Build from the camelCase JSON body sent by clients.

        Integer fields may arrive as decimal strings. Both the contract
        spelling (``fullfiller``) and ``fulfiller`` are accepted.
        """
        values: dict[str, Any] = {}
        for attr, wire in cls._WIRE:
            if wire in data:
                raw = data[wire]
            elif wire.replace("fullfiller", "fulfiller") in data:
                raw = data[wire.replace("fullfiller", "fulfiller")]
            elif attr == "fulfiller":
                raw = ZERO_ADDRESS
            elif attr == "parameters":
                raw = "0x"
            else:
                raise ValueError(f"executionData.{wire} is required")
            values[attr] = cls._coerce(attr, raw)
        return cls(**values)

    @classmethod
    def from_abi(cls, value: Any) -> "ExecutionData":
        """Build from a decoded ABI tuple (sequence or name-keyed mapping)."""
        if isinstance(value, Mapping):
            return cls(
                **{attr: cls._coerce(attr, value[wire]) for attr, wire in cls._WIRE}
            )
        items: Sequence[Any] = tuple(value)
        if len(items) != len(cls._WIRE):
            raise ValueError(
                f"executionData tuple has {len(items)} fields, expected {len(cls._WIRE)}"
            )
        return cls(
            **{attr: cls._coerce(attr, item) for (attr, _), item in zip(cls._WIRE, items)}
        )

    def to_json(self) -> dict[str, str]:
        """camelCase JSON with integers as decimal strings."""
        return {wire: str(getattr(self, attr)) for attr, wire in self._WIRE}

    def to_abi(self) -> tuple:
        """Tuple in ABI component order, ready for contract calls."""
        return (
            hex_to_bytes(self.order_hash),
            hex_to_bytes(self.hashlock),
            to_checksum_address(self.asker),
            to_checksum_address(self.fulfiller),
            to_checksum_address(self.src_token),
            to_checksum_address(self.dst_token),
            self.src_chain_id,
            self.dst_chain_id,
            self.asker_amount,
            self.fulfiller_amount,
            self.platform_fee,
            to_checksum_address(self.fee_collector),
            self.timelocks,
            hex_to_bytes(self.parameters),
        )


class SwapStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    SwapStatus.PENDING: 0,
    SwapStatus.FULFILLED: 1,
    SwapStatus.COMPLETED: 2,
}


@dataclass(frozen=True)
class CompletionTxHashes:
    """src_tx_hash is None when the source escrow was settled by another sender."""

    src_tx_hash: Optional[str]
    dst_tx_hash: str

    def to_json(self) -> dict[str, Optional[str]]:
        return {"srcTxHash": self.src_tx_hash, "dstTxHash": self.dst_tx_hash}


@dataclass(frozen=True)
class SwapRecord:
    """
    A tracked swap.

    Records are immutable snapshots; the registry is the only place a new
    version of a record is produced.
    """

    chain_key: str
    factory_address: str
    execution_data: ExecutionData
    src_escrow: str
    dst_escrow: str
    status: SwapStatus = SwapStatus.PENDING
    src_deployed: bool = False
    dst_deployed: bool = False
    completion_tx_hashes: Optional[CompletionTxHashes] = None
    created_at: int = 0
    updated_at: int = 0

    @property
    def hashlock(self) -> str:
        return self.execution_data.hashlock

    @property
    def hashlock_key(self) -> str:
        return self.execution_data.hashlock.lower()

    @property
    def both_deployed(self) -> bool:
        return self.src_deployed and self.dst_deployed

    def evolve(self, **changes: Any) -> "SwapRecord":
        return replace(self, **changes)

    def to_json(self) -> dict[str, Any]:
        return {
            "chainKey": self.chain_key,
            "factoryAddress": self.factory_address,
            "executionData": self.execution_data.to_json(),
            "srcEscrow": self.src_escrow,
            "dstEscrow": self.dst_escrow,
            "status": self.status.value,
            "srcDeployed": self.src_deployed,
            "dstDeployed": self.dst_deployed,
            "completionTxHashes": (
                self.completion_tx_hashes.to_json() if self.completion_tx_hashes else None
            ),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class PendingClaim:
    """A user-submitted secret awaiting the withdrawal sequence."""

    secret: str
    swap: SwapRecord
    user_address: str
    created_at: int = field(default_factory=now_ms)

    @property
    def hashlock_key(self) -> str:
        return self.swap.hashlock_key


@dataclass(frozen=True)
class RawLog:
    """A chain log as returned by eth_getLogs, with hex normalized."""

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str = ""
    log_index: int = 0

    @classmethod
    def from_rpc(cls, log: Mapping[str, Any]) -> "RawLog":
        """Accept web3 AttributeDicts (HexBytes values) or plain JSON logs."""
        block_number = log.get("blockNumber", 0)
        log_index = log.get("logIndex", 0)
        tx_hash = log.get("transactionHash")
        return cls(
            address=str(log["address"]),
            topics=tuple(normalize_hex(t) for t in log.get("topics", ())),
            data=normalize_hex(log.get("data", b"")),
            block_number=int(block_number, 16) if isinstance(block_number, str) else int(block_number),
            transaction_hash=normalize_hex(tx_hash) if tx_hash is not None else "",
            log_index=int(log_index, 16) if isinstance(log_index, str) else int(log_index),
        )
