"""
Event log decoder.

Indexes the events of a set of candidate ABIs by topic0 and decodes raw logs
with eth_abi. A log whose topic0 is unknown is Unrecognized (``None``);
unrelated contracts can share a block range with the factory, so that is not
an error. A log whose topic0 is known but whose payload does not fit the ABI
raises DecodeError.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import structlog
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak

from .abi import ESCROW_DST_ABI, ESCROW_FACTORY_ABI
from .errors import DecodeError
from .events import (
    DstEscrowCreated,
    DstSecretRevealed,
    EventMeta,
    FulfillerSet,
    SrcEscrowCreated,
    SwapEvent,
)
from .models import ExecutionData, RawLog, hex_to_bytes, normalize_hex

logger = structlog.get_logger()


def canonical_type(param: dict) -> str:
    """ABI type string with tuples expanded, e.g. ``(bytes32,address)[]``."""
    abi_type = param["type"]
    if abi_type.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param["components"])
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def event_signature(event_abi: dict) -> str:
    types = ",".join(canonical_type(i) for i in event_abi["inputs"])
    return f"{event_abi['name']}({types})"


def event_topic(event_abi: dict) -> str:
    return normalize_hex(keccak(text=event_signature(event_abi)))


def _is_dynamic(abi_type: str) -> bool:
    return (
        abi_type in ("bytes", "string")
        or abi_type.endswith("[]")
        or abi_type.startswith("(")
    )


def _plain(value: Any) -> Any:
    """bytes -> hex, recursively through tuples."""
    if isinstance(value, (bytes, bytearray)):
        return normalize_hex(value)
    if isinstance(value, (tuple, list)):
        return tuple(_plain(v) for v in value)
    return value


@dataclass(frozen=True)
class DecodedEvent:
    name: str
    args: dict[str, Any]
    log: RawLog


@dataclass(frozen=True)
class _EventSpec:
    name: str
    inputs: list[dict]

    def decode(self, log: RawLog) -> DecodedEvent:
        indexed = [i for i in self.inputs if i.get("indexed")]
        plain = [i for i in self.inputs if not i.get("indexed")]

        if len(log.topics) != len(indexed) + 1:
            raise DecodeError(
                f"{self.name}: expected {len(indexed) + 1} topics, got {len(log.topics)}"
            )

        args: dict[str, Any] = {}
        try:
            for param, topic in zip(indexed, log.topics[1:]):
                abi_type = canonical_type(param)
                if _is_dynamic(abi_type):
                    # Indexed dynamic values are only present as their hash.
                    args[param["name"]] = topic
                else:
                    args[param["name"]] = _plain(abi_decode([abi_type], hex_to_bytes(topic))[0])

            values = abi_decode([canonical_type(p) for p in plain], hex_to_bytes(log.data))
        except (DecodingError, ValueError, TypeError) as e:
            raise DecodeError(f"{self.name}: {e}") from e

        for param, value in zip(plain, values):
            args[param["name"]] = _plain(value)

        return DecodedEvent(name=self.name, args=args, log=log)


class EventDecoder:
    """Decode raw logs against a fixed set of candidate ABIs."""

    def __init__(self, abis: Iterable[list[dict]] = (ESCROW_FACTORY_ABI, ESCROW_DST_ABI)):
        self._specs: dict[str, _EventSpec] = {}
        for abi in abis:
            for item in abi:
                if item.get("type") != "event" or item.get("anonymous"):
                    continue
                self._specs[event_topic(item)] = _EventSpec(item["name"], item["inputs"])

    @property
    def topics(self) -> dict[str, str]:
        """topic0 -> event name."""
        return {topic: spec.name for topic, spec in self._specs.items()}

    def decode(self, log: RawLog) -> Optional[DecodedEvent]:
        """Decoded event, or None when the log matches no known event."""
        if not log.topics:
            return None
        spec = self._specs.get(log.topics[0].lower())
        if spec is None:
            return None
        return spec.decode(log)

    def decode_typed(self, log: RawLog, chain_key: str) -> Optional[SwapEvent]:
        decoded = self.decode(log)
        if decoded is None:
            return None
        return to_swap_event(decoded, chain_key)


def to_swap_event(decoded: DecodedEvent, chain_key: str) -> Optional[SwapEvent]:
    """Typed event for the four swap events; None for any other event."""
    meta = EventMeta(
        chain_key=chain_key,
        block_number=decoded.log.block_number,
        tx_hash=decoded.log.transaction_hash,
        log_index=decoded.log.log_index,
    )
    args = decoded.args
    try:
        if decoded.name == "SrcEscrowCreated":
            return SrcEscrowCreated(
                meta=meta,
                execution_data=ExecutionData.from_abi(args["srcExecutionData"]),
            )
        if decoded.name == "DstEscrowCreated":
            return DstEscrowCreated(
                meta=meta,
                escrow=str(args["escrow"]),
                hashlock=normalize_hex(args["hashlock"]),
                asker=str(args["asker"]),
            )
        if decoded.name == "FulfillerSet":
            return FulfillerSet(
                meta=meta,
                src_escrow=str(args["srcEscrowAddress"]),
                fulfiller=str(args["fulfillerAddress"]),
            )
        if decoded.name == "DstSecretRevealed":
            return DstSecretRevealed(
                meta=meta,
                secret=normalize_hex(args["secret"]),
                hashlock=normalize_hex(args["hashlock"]),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"{decoded.name}: {e}") from e
    return None


def decode_log(log: RawLog, candidate_abis: Iterable[list[dict]]) -> Optional[DecodedEvent]:
    """One-shot decode against ``candidate_abis``."""
    return EventDecoder(candidate_abis).decode(log)
