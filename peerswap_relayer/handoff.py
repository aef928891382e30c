"""
Fulfiller handoff: registers the relayer as fulfiller of a source escrow.

Until the relayer is the fulfiller on the source escrow it cannot withdraw
the source leg on the asker's behalf, so this runs as soon as both escrows
of a swap are known to be deployed.
"""

import asyncio
from dataclasses import dataclass
from typing import Mapping, Optional

import structlog
from eth_utils import to_checksum_address

from .abi import ESCROW_FACTORY_ABI
from .config import RelayerConfig
from .errors import ConfigurationError, ContractRevertError, DecodeError, RpcError
from .events import SetFulfiller
from .evm import ChainClient
from .models import same_address
from .retry import retry_transient

logger = structlog.get_logger()


@dataclass
class HandoffResult:
    """
    Outcome of one SetFulfiller action.

    outcome is one of: submitted, already_set, aborted, failed.
    """

    outcome: str
    tx_hash: Optional[str] = None
    reason: Optional[str] = None


class FulfillerHandoff:
    def __init__(
        self,
        config: RelayerConfig,
        clients: Mapping[str, ChainClient],
    ):
        self.config = config
        self.clients = clients
        self._verifications: set[asyncio.Task] = set()
        # Handoffs whose transient retries ran out, keyed by hashlock.
        self._failed: dict[str, SetFulfiller] = {}

    @property
    def _settings(self):
        return self.config.settings

    async def execute(self, action: SetFulfiller) -> HandoffResult:
        """
        Run one handoff with transient retries.

        A handoff that exhausts its retries is kept until ``take_failed``
        hands it back for another run.
        """
        key = action.hashlock.lower()
        try:
            result = await retry_transient(
                lambda: self._execute_once(action),
                attempts=self._settings.set_fulfiller_attempts,
                backoff_seconds=self._settings.retry_backoff_seconds,
                event="set_fulfiller_retry",
                chain=action.chain_key,
                hashlock=action.hashlock,
            )
        except (RpcError, DecodeError) as e:
            logger.error(
                "set_fulfiller_failed",
                chain=action.chain_key,
                hashlock=action.hashlock,
                src_escrow=action.src_escrow,
                error=str(e),
            )
            self._failed[key] = action
            return HandoffResult(outcome="failed", reason=str(e))

        self._failed.pop(key, None)
        return result

    def take_failed(self, hashlock: Optional[str] = None) -> list[SetFulfiller]:
        """Remove and return failed handoffs, all of them or one hashlock's."""
        if hashlock is None:
            actions = list(self._failed.values())
            self._failed.clear()
            return actions
        action = self._failed.pop(hashlock.lower(), None)
        return [action] if action is not None else []

    def _abort(self, action: SetFulfiller, reason: str, **context) -> HandoffResult:
        logger.warning(
            "set_fulfiller_aborted",
            chain=action.chain_key,
            hashlock=action.hashlock,
            src_escrow=action.src_escrow,
            reason=reason,
            **context,
        )
        return HandoffResult(outcome="aborted", reason=reason)

    async def _execute_once(self, action: SetFulfiller) -> HandoffResult:
        client = self.clients[action.chain_key]
        factory = self.config.chain(action.chain_key).factory_address

        try:
            relayer = client.address
        except ConfigurationError as e:
            return self._abort(action, str(e))

        if not await client.has_code(action.src_escrow):
            return self._abort(action, "src_escrow_missing")

        factory_relayer = await client.relayer_of(factory)
        if not same_address(factory_relayer, relayer):
            # Retrying cannot help until the factory is reconfigured.
            logger.error(
                "relayer_address_mismatch",
                chain=action.chain_key,
                factory=factory,
                factory_relayer=factory_relayer,
                relayer=relayer,
            )
            return HandoffResult(outcome="aborted", reason="relayer_address_mismatch")

        try:
            if not await client.is_active(action.src_escrow):
                return self._abort(action, "escrow_inactive")
            current = await client.execution_data_of(action.src_escrow)
        except DecodeError as e:
            return self._abort(action, "escrow_state_unreadable", error=str(e))

        if same_address(current.fulfiller, relayer):
            logger.info(
                "fulfiller_already_set",
                chain=action.chain_key,
                hashlock=action.hashlock,
                src_escrow=action.src_escrow,
            )
            return HandoffResult(outcome="already_set")

        try:
            tx_hash = await client.write_contract(
                factory,
                ESCROW_FACTORY_ABI,
                "setFulfiller",
                [to_checksum_address(action.src_escrow), relayer],
            )
        except ContractRevertError as e:
            logger.error(
                "set_fulfiller_failed",
                chain=action.chain_key,
                hashlock=action.hashlock,
                src_escrow=action.src_escrow,
                error=str(e),
            )
            return HandoffResult(outcome="failed", reason=str(e))

        logger.info(
            "set_fulfiller_submitted",
            chain=action.chain_key,
            hashlock=action.hashlock,
            src_escrow=action.src_escrow,
            tx_hash=tx_hash,
        )

        task = asyncio.create_task(self._verify_later(action, relayer))
        self._verifications.add(task)
        task.add_done_callback(self._verifications.discard)

        return HandoffResult(outcome="submitted", tx_hash=tx_hash)

    async def _verify_later(self, action: SetFulfiller, relayer: str) -> None:
        await asyncio.sleep(self._settings.fulfiller_verify_delay_seconds)
        await self.verify(action, relayer)

    async def verify(self, action: SetFulfiller, relayer: str) -> bool:
        """Best-effort check that the fulfiller was persisted on-chain."""
        client = self.clients[action.chain_key]
        try:
            current = await client.execution_data_of(action.src_escrow)
        except (RpcError, DecodeError) as e:
            logger.warning(
                "fulfiller_verification_failed",
                chain=action.chain_key,
                hashlock=action.hashlock,
                error=str(e),
            )
            return False

        if same_address(current.fulfiller, relayer):
            logger.info(
                "fulfiller_verified",
                chain=action.chain_key,
                hashlock=action.hashlock,
                src_escrow=action.src_escrow,
            )
            return True

        logger.error(
            "fulfiller_discrepancy",
            chain=action.chain_key,
            hashlock=action.hashlock,
            src_escrow=action.src_escrow,
            expected=relayer,
            actual=current.fulfiller,
        )
        return False

    async def wait_idle(self) -> None:
        """Wait for outstanding verification tasks."""
        if self._verifications:
            await asyncio.gather(*list(self._verifications), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._verifications):
            task.cancel()
