"""
Reconciler: turns decoded chain events into registry updates and
follow-up actions.

Source and destination escrows are deployed on different chains and the
two pollers run independently, so SrcEscrowCreated and DstEscrowCreated
can arrive in either order. Whichever event completes the deployment pair
schedules the fulfiller handoff; the registry reports that transition
atomically, so the handoff is scheduled exactly once and replayed events
schedule nothing.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional

import structlog

from .config import RelayerConfig
from .errors import ConfigurationError, RpcError
from .events import (
    Action,
    DstEscrowCreated,
    DstSecretRevealed,
    FulfillerSet,
    SetFulfiller,
    SrcEscrowCreated,
    SwapEvent,
    Withdraw,
)
from .evm import ChainClient
from .models import SwapRecord, SwapStatus, hashlock_of
from .store import SwapRegistry, Transition

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    outcome: str
    transition: Optional[Transition] = None
    actions: list[Action] = field(default_factory=list)


class Reconciler:
    def __init__(
        self,
        config: RelayerConfig,
        registry: SwapRegistry,
        clients: Mapping[str, ChainClient],
    ):
        self.config = config
        self.registry = registry
        self.clients = clients

    async def reconcile(self, event: SwapEvent) -> ReconcileResult:
        if isinstance(event, SrcEscrowCreated):
            return await self._on_src_created(event)
        if isinstance(event, DstEscrowCreated):
            return await self._on_dst_created(event)
        if isinstance(event, DstSecretRevealed):
            return self._on_secret_revealed(event)
        if isinstance(event, FulfillerSet):
            logger.info(
                "fulfiller_set_observed",
                chain=event.meta.chain_key,
                src_escrow=event.src_escrow,
                fulfiller=event.fulfiller,
                tx_hash=event.meta.tx_hash,
            )
            return ReconcileResult(outcome="informational")
        raise TypeError(f"Unsupported event: {event!r}")

    def _orphan(self, event: SwapEvent, hashlock: str) -> ReconcileResult:
        logger.warning(
            "swap_orphan_event",
            chain=event.meta.chain_key,
            event_type=type(event).__name__,
            hashlock=hashlock,
        )
        return ReconcileResult(outcome="orphan")

    def _src_chain_key(self, record: SwapRecord) -> Optional[str]:
        try:
            return self.config.chain_for_id(record.execution_data.src_chain_id).key
        except ConfigurationError as e:
            logger.error("swap_chain_unresolved", hashlock=record.hashlock, error=str(e))
            return None

    def handoff_actions(self, transition: Optional[Transition]) -> list[Action]:
        if transition is None or not transition.became_both_deployed:
            return []
        record = transition.after
        chain_key = self._src_chain_key(record)
        if chain_key is None:
            return []
        logger.info(
            "set_fulfiller_scheduled",
            chain=chain_key,
            hashlock=record.hashlock,
            src_escrow=record.src_escrow,
        )
        return [SetFulfiller(chain_key=chain_key, src_escrow=record.src_escrow, hashlock=record.hashlock)]

    async def _on_src_created(self, event: SrcEscrowCreated) -> ReconcileResult:
        record = self.registry.get_by_hashlock(event.hashlock)
        if record is None:
            return self._orphan(event, event.hashlock)

        # The source escrow lives on the chain named by the execution data,
        # not necessarily the chain this event was observed on.
        try:
            chain = self.config.chain_for_id(event.execution_data.src_chain_id)
            deployed = await self.clients[chain.key].has_code(record.src_escrow)
        except (RpcError, ConfigurationError, KeyError) as e:
            logger.warning(
                "src_escrow_unverified",
                chain=event.meta.chain_key,
                hashlock=event.hashlock,
                src_escrow=record.src_escrow,
                error=str(e),
            )
            return ReconcileResult(outcome="unverified")

        if not deployed:
            logger.warning(
                "src_escrow_not_deployed",
                chain=chain.key,
                hashlock=event.hashlock,
                src_escrow=record.src_escrow,
            )
            return ReconcileResult(outcome="unverified")

        transition = await self.registry.update(event.hashlock, src_deployed=True)
        logger.info(
            "src_escrow_deployed",
            chain=chain.key,
            hashlock=event.hashlock,
            src_escrow=record.src_escrow,
        )
        return ReconcileResult(
            outcome="applied", transition=transition, actions=self.handoff_actions(transition)
        )

    async def _on_dst_created(self, event: DstEscrowCreated) -> ReconcileResult:
        if self.registry.get_by_hashlock(event.hashlock) is None:
            return self._orphan(event, event.hashlock)

        # The event address is authoritative over the predicted one.
        transition = await self.registry.update(
            event.hashlock, dst_deployed=True, dst_escrow=event.escrow
        )
        logger.info(
            "dst_escrow_deployed",
            chain=event.meta.chain_key,
            hashlock=event.hashlock,
            dst_escrow=event.escrow,
        )
        return ReconcileResult(
            outcome="applied", transition=transition, actions=self.handoff_actions(transition)
        )

    def _on_secret_revealed(self, event: DstSecretRevealed) -> ReconcileResult:
        record = self.registry.get_by_hashlock(event.hashlock)
        if record is None:
            return self._orphan(event, event.hashlock)

        if hashlock_of(event.secret) != event.hashlock.lower():
            logger.error(
                "revealed_secret_mismatch",
                chain=event.meta.chain_key,
                hashlock=event.hashlock,
                tx_hash=event.meta.tx_hash,
            )
            return ReconcileResult(outcome="skipped")

        if record.status == SwapStatus.COMPLETED:
            logger.info("secret_revealed_swap_completed", hashlock=event.hashlock)
            return ReconcileResult(outcome="skipped")

        chain_key = self._src_chain_key(record)
        if chain_key is None:
            return ReconcileResult(outcome="skipped")

        logger.info(
            "source_withdraw_scheduled",
            chain=chain_key,
            hashlock=event.hashlock,
            src_escrow=record.src_escrow,
            reveal_tx_hash=event.meta.tx_hash,
        )
        action = Withdraw(
            chain_key=chain_key,
            src_escrow=record.src_escrow,
            secret=event.secret,
            hashlock=record.hashlock,
            execution_data=record.execution_data,
            reveal_tx_hash=event.meta.tx_hash,
        )
        return ReconcileResult(outcome="applied", actions=[action])
