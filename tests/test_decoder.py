"""
Tests for the event decoder.
"""

import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak

from peerswap_relayer.abi import ESCROW_DST_ABI, ESCROW_FACTORY_ABI
from peerswap_relayer.decoder import EventDecoder, decode_log, event_signature, event_topic
from peerswap_relayer.errors import DecodeError
from peerswap_relayer.events import DstEscrowCreated, DstSecretRevealed, FulfillerSet, SrcEscrowCreated
from peerswap_relayer.models import RawLog, normalize_hex, same_address

from fakes import (
    ASKER,
    DST_ESCROW,
    HASHLOCK,
    RELAYER,
    SECRET,
    SRC_ESCROW,
    make_execution_data,
    make_log,
)

FACTORY = "0xA26D2Ee1d536b0E17240c8c32D7e894578e21148"


def _event(abi: list[dict], name: str) -> dict:
    return next(i for i in abi if i.get("type") == "event" and i["name"] == name)


class TestSignatures:
    """Canonical event signatures and topic hashes."""

    def test_dst_escrow_created_signature(self) -> None:
        event = _event(ESCROW_FACTORY_ABI, "DstEscrowCreated")
        assert event_signature(event) == "DstEscrowCreated(address,bytes32,address)"

    def test_tuple_is_expanded(self) -> None:
        """Tuple parameters appear as their component types."""
        event = _event(ESCROW_FACTORY_ABI, "SrcEscrowCreated")
        assert event_signature(event) == (
            "SrcEscrowCreated((bytes32,bytes32,address,address,address,address,"
            "uint256,uint256,uint256,uint256,uint256,address,uint256,bytes))"
        )

    def test_topic_is_keccak_of_signature(self) -> None:
        event = _event(ESCROW_DST_ABI, "DstSecretRevealed")
        expected = "0x" + keccak(text="DstSecretRevealed(bytes32,bytes32)").hex()
        assert event_topic(event) == expected

    def test_decoder_indexes_all_events(self) -> None:
        names = set(EventDecoder().topics.values())
        assert names == {"SrcEscrowCreated", "DstEscrowCreated", "FulfillerSet", "DstSecretRevealed"}


class TestDecode:
    """Decoding raw logs into typed events."""

    def test_src_escrow_created(self) -> None:
        execution_data = make_execution_data()
        log = make_log(
            ESCROW_FACTORY_ABI,
            "SrcEscrowCreated",
            FACTORY,
            {"srcExecutionData": execution_data},
            block_number=7,
            log_index=2,
        )

        event = EventDecoder().decode_typed(log, "sepolia")

        assert isinstance(event, SrcEscrowCreated)
        assert event.hashlock == HASHLOCK
        assert event.meta.chain_key == "sepolia"
        assert event.meta.block_number == 7
        assert event.meta.log_index == 2
        decoded = event.execution_data
        assert decoded.src_chain_id == execution_data.src_chain_id
        assert decoded.asker_amount == execution_data.asker_amount
        assert same_address(decoded.asker, ASKER)
        assert decoded.parameters == "0x"

    def test_dst_escrow_created(self) -> None:
        log = make_log(
            ESCROW_FACTORY_ABI,
            "DstEscrowCreated",
            FACTORY,
            {"escrow": DST_ESCROW, "hashlock": HASHLOCK, "asker": ASKER},
        )

        event = EventDecoder().decode_typed(log, "baseSepolia")

        assert isinstance(event, DstEscrowCreated)
        assert same_address(event.escrow, DST_ESCROW)
        assert event.hashlock == HASHLOCK
        assert same_address(event.asker, ASKER)

    def test_fulfiller_set_indexed_params(self) -> None:
        """Indexed address parameters are decoded from topics."""
        log = make_log(
            ESCROW_FACTORY_ABI,
            "FulfillerSet",
            FACTORY,
            {"srcEscrowAddress": SRC_ESCROW, "fulfillerAddress": RELAYER},
        )

        assert len(log.topics) == 3
        event = EventDecoder().decode_typed(log, "sepolia")

        assert isinstance(event, FulfillerSet)
        assert same_address(event.src_escrow, SRC_ESCROW)
        assert same_address(event.fulfiller, RELAYER)

    def test_dst_secret_revealed(self) -> None:
        log = make_log(
            ESCROW_DST_ABI,
            "DstSecretRevealed",
            DST_ESCROW,
            {"secret": SECRET, "hashlock": HASHLOCK},
        )

        event = EventDecoder().decode_typed(log, "baseSepolia")

        assert isinstance(event, DstSecretRevealed)
        assert event.secret == SECRET
        assert event.hashlock == HASHLOCK


class TestUnrecognized:
    """Logs the decoder does not know."""

    def test_unknown_topic_returns_none(self) -> None:
        """An unrelated contract's log is unrecognized, not an error."""
        transfer = normalize_hex(keccak(text="Transfer(address,address,uint256)"))
        log = RawLog(
            address=FACTORY,
            topics=(transfer,),
            data=normalize_hex(abi_encode(["uint256"], [1])),
            block_number=1,
        )

        assert EventDecoder().decode(log) is None
        assert EventDecoder().decode_typed(log, "sepolia") is None

    def test_log_without_topics_returns_none(self) -> None:
        log = RawLog(address=FACTORY, topics=(), data="0x", block_number=1)
        assert EventDecoder().decode(log) is None

    def test_decode_log_respects_candidate_abis(self) -> None:
        """A dst escrow event is unrecognized against the factory ABI alone."""
        log = make_log(
            ESCROW_DST_ABI,
            "DstSecretRevealed",
            DST_ESCROW,
            {"secret": SECRET, "hashlock": HASHLOCK},
        )

        assert decode_log(log, [ESCROW_FACTORY_ABI]) is None
        decoded = decode_log(log, [ESCROW_DST_ABI])
        assert decoded is not None
        assert decoded.name == "DstSecretRevealed"


class TestMalformed:
    """Known topics with data that does not fit the ABI."""

    def test_truncated_data_raises(self) -> None:
        log = make_log(
            ESCROW_FACTORY_ABI,
            "DstEscrowCreated",
            FACTORY,
            {"escrow": DST_ESCROW, "hashlock": HASHLOCK, "asker": ASKER},
        )
        truncated = RawLog(
            address=log.address,
            topics=log.topics,
            data=log.data[:66],
            block_number=log.block_number,
        )

        with pytest.raises(DecodeError):
            EventDecoder().decode(truncated)

    def test_topic_count_mismatch_raises(self) -> None:
        log = make_log(
            ESCROW_FACTORY_ABI,
            "FulfillerSet",
            FACTORY,
            {"srcEscrowAddress": SRC_ESCROW, "fulfillerAddress": RELAYER},
        )
        missing_topic = RawLog(
            address=log.address,
            topics=log.topics[:2],
            data=log.data,
            block_number=log.block_number,
        )

        with pytest.raises(DecodeError):
            EventDecoder().decode(missing_topic)
