"""
Withdrawal orchestrator.

Two entry points share one per-hashlock lock so a swap is never withdrawn
by two sequences at once:

(a) ``submit_claim`` / ``process_claim``: the asker hands the secret to the
    relayer. The destination escrow is withdrawn first, then the source.
    Withdrawing the destination publishes the secret on-chain, so once that
    step succeeds the source leg can always be completed later through (b),
    even if this process dies before step 4.
(b) ``withdraw_source``: a DstSecretRevealed event was observed; withdraw
    the source escrow with the revealed secret.

Both read the authoritative execution data from the escrow contracts rather
than the local registry; the on-chain fulfiller may differ from what was
recorded when the swap was created.
"""

import asyncio
from typing import Mapping, Optional

import structlog

from .abi import ESCROW_DST_ABI, ESCROW_SRC_ABI
from .config import RelayerConfig
from .errors import (
    ClaimRejected,
    ConfigurationError,
    ContractRevertError,
    DecodeError,
    NotFoundError,
    RelayerError,
)
from .events import Withdraw
from .evm import ChainClient
from .models import (
    CompletionTxHashes,
    ExecutionData,
    PendingClaim,
    SwapStatus,
    hashlock_of,
    hex_to_bytes,
    normalize_hex,
    same_address,
)
from .retry import retry_transient
from .store import PendingClaimStore, SwapRegistry

logger = structlog.get_logger()


class WithdrawalOrchestrator:
    def __init__(
        self,
        config: RelayerConfig,
        registry: SwapRegistry,
        claims: PendingClaimStore,
        clients: Mapping[str, ChainClient],
    ):
        self.config = config
        self.registry = registry
        self.claims = claims
        self.clients = clients
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def _settings(self):
        return self.config.settings

    def _lock(self, hashlock: str) -> asyncio.Lock:
        key = hashlock.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Path (a): user-submitted secret
    # ------------------------------------------------------------------

    def validate_claim(self, secret: str, hashlock: str, user_address: str) -> PendingClaim:
        """
        Check a claim without touching the registry or any chain.

        Raises ClaimRejected (400/403/409) or NotFoundError.
        """
        hashlock = normalize_hex(hashlock)
        try:
            if len(hex_to_bytes(secret)) != 32:
                raise ValueError(secret)
            computed = hashlock_of(secret)
        except ValueError:
            raise ClaimRejected("Secret must be 32 bytes of hex", status_code=400)
        if computed != hashlock:
            logger.warning("claim_secret_mismatch", hashlock=hashlock, user=user_address)
            raise ClaimRejected("Secret does not match hashlock", status_code=400)

        record = self.registry.get_by_hashlock(hashlock)
        if record is None:
            raise NotFoundError(hashlock)

        if not same_address(record.execution_data.asker, user_address):
            logger.warning(
                "claim_unauthorized",
                hashlock=hashlock,
                user=user_address,
                asker=record.execution_data.asker,
            )
            raise ClaimRejected("Only the asker can claim this swap", status_code=403)

        if record.status == SwapStatus.COMPLETED:
            raise ClaimRejected("Swap already completed", status_code=409)
        if hashlock in self.claims:
            raise ClaimRejected("Claim already in progress", status_code=409)

        return PendingClaim(secret=secret, swap=record, user_address=user_address)

    def submit_claim(self, secret: str, hashlock: str, user_address: str) -> PendingClaim:
        """
        Validate a claim, store it and start the withdrawal in the background.

        Returns as soon as the sequence is scheduled; its outcome is only
        observable through the swap's status.
        """
        claim = self.validate_claim(secret, hashlock, user_address)
        self.claims.put(claim)
        logger.info("claim_accepted", hashlock=hashlock, user=user_address)
        self._spawn(self.process_claim(claim))
        return claim

    async def process_claim(self, claim: PendingClaim) -> Optional[CompletionTxHashes]:
        """Destination-then-source withdrawal for a stored claim."""
        hashlock = claim.swap.hashlock
        try:
            async with self._lock(hashlock):
                return await self._process_claim(claim)
        finally:
            self.claims.pop(hashlock)

    async def _process_claim(self, claim: PendingClaim) -> Optional[CompletionTxHashes]:
        record = self.registry.get_by_hashlock(claim.swap.hashlock) or claim.swap
        hashlock = record.hashlock
        if record.status == SwapStatus.COMPLETED:
            logger.info("claim_skipped_completed", hashlock=hashlock)
            return record.completion_tx_hashes

        try:
            src_client = self.clients[self.config.chain_for_id(record.execution_data.src_chain_id).key]
            dst_client = self.clients[self.config.chain_for_id(record.execution_data.dst_chain_id).key]
        except (ConfigurationError, KeyError) as e:
            logger.error("claim_chain_unresolved", hashlock=hashlock, error=str(e))
            return None

        # Steps 1-2: destination leg. Failure here changes nothing on either chain.
        try:
            dst_execution_data = await dst_client.execution_data_of(record.dst_escrow)
            logger.info(
                "claim_dst_execution_data",
                chain=dst_client.key,
                hashlock=hashlock,
                fulfiller=dst_execution_data.fulfiller,
            )
            dst_receipt = await dst_client.transact(
                record.dst_escrow,
                ESCROW_DST_ABI,
                "withdraw",
                [hex_to_bytes(claim.secret), dst_execution_data.to_abi()],
                timeout=self._settings.tx_confirmation_timeout_seconds,
            )
        except RelayerError as e:
            logger.error(
                "claim_dst_withdraw_failed",
                chain=dst_client.key,
                hashlock=hashlock,
                dst_escrow=record.dst_escrow,
                error=str(e),
            )
            return None

        logger.info(
            "claim_dst_withdrawn",
            chain=dst_client.key,
            hashlock=hashlock,
            tx_hash=dst_receipt.tx_hash,
        )

        # Steps 3-4: source leg. The secret is public now.
        try:
            src_tx_hash = await self._withdraw_source_leg(
                src_client, record.src_escrow, claim.secret, hashlock
            )
        except RelayerError as e:
            logger.error(
                "source_withdraw_stranded",
                chain=src_client.key,
                hashlock=hashlock,
                src_escrow=record.src_escrow,
                dst_tx_hash=dst_receipt.tx_hash,
                error=str(e),
            )
            return None

        hashes = CompletionTxHashes(src_tx_hash=src_tx_hash, dst_tx_hash=dst_receipt.tx_hash)
        await self.registry.update(
            hashlock, status=SwapStatus.COMPLETED, completion_tx_hashes=hashes
        )
        logger.info(
            "swap_completed",
            hashlock=hashlock,
            src_tx_hash=hashes.src_tx_hash,
            dst_tx_hash=hashes.dst_tx_hash,
            trigger="claim",
        )
        return hashes

    # ------------------------------------------------------------------
    # Path (b): secret revealed on the destination chain
    # ------------------------------------------------------------------

    async def withdraw_source(self, action: Withdraw) -> Optional[str]:
        """
        Withdraw the source escrow using a revealed secret.

        Returns the source withdraw tx hash, or None when the swap was not
        completed or the escrow was settled without a relayer transaction.
        """
        async with self._lock(action.hashlock):
            record = self.registry.get_by_hashlock(action.hashlock)
            if record is None:
                logger.warning("source_withdraw_orphan", hashlock=action.hashlock)
                return None
            if record.status == SwapStatus.COMPLETED:
                logger.info("source_withdraw_skipped_completed", hashlock=action.hashlock)
                return None

            client = self.clients[action.chain_key]
            try:
                src_tx_hash = await self._withdraw_source_leg(
                    client,
                    action.src_escrow,
                    action.secret,
                    action.hashlock,
                    fallback=action.execution_data,
                )
            except RelayerError as e:
                logger.error(
                    "source_withdraw_failed",
                    chain=action.chain_key,
                    hashlock=action.hashlock,
                    src_escrow=action.src_escrow,
                    error=str(e),
                )
                return None

            hashes = CompletionTxHashes(
                src_tx_hash=src_tx_hash,
                dst_tx_hash=action.reveal_tx_hash,
            )
            await self.registry.update(
                action.hashlock, status=SwapStatus.COMPLETED, completion_tx_hashes=hashes
            )
            logger.info(
                "swap_completed",
                hashlock=action.hashlock,
                src_tx_hash=hashes.src_tx_hash,
                dst_tx_hash=hashes.dst_tx_hash,
                trigger="secret_revealed",
            )
            return src_tx_hash

    # ------------------------------------------------------------------

    async def _send_source_withdraw(
        self,
        client: ChainClient,
        src_escrow: str,
        secret: str,
        fallback: Optional[ExecutionData] = None,
    ) -> str:
        try:
            execution_data = await client.execution_data_of(src_escrow)
        except DecodeError:
            if fallback is None:
                raise
            logger.warning("src_execution_data_fallback", chain=client.key, src_escrow=src_escrow)
            execution_data = fallback

        return await client.write_contract(
            src_escrow,
            ESCROW_SRC_ABI,
            "withdraw",
            [hex_to_bytes(secret), execution_data.to_abi()],
        )

    async def _withdraw_source_leg(
        self,
        client: ChainClient,
        src_escrow: str,
        secret: str,
        hashlock: str,
        fallback: Optional[ExecutionData] = None,
    ) -> Optional[str]:
        """
        Withdraw the source escrow and return the withdraw tx hash.

        Sending is retried only until the node returns a transaction hash.
        After that the same transaction is waited on again, never resent.
        When the leg still fails but the escrow is no longer active, the
        source is settled and the known tx hash (None if nothing was sent)
        is returned instead of raising.
        """
        settings = self._settings
        tx_hash: Optional[str] = None
        try:
            tx_hash = await retry_transient(
                lambda: self._send_source_withdraw(client, src_escrow, secret, fallback),
                attempts=settings.source_withdraw_attempts,
                backoff_seconds=settings.source_withdraw_backoff_seconds,
                event="source_withdraw_retry",
                chain=client.key,
                hashlock=hashlock,
            )
            receipt = await retry_transient(
                lambda: client.wait_for_receipt(
                    tx_hash, timeout=settings.tx_confirmation_timeout_seconds
                ),
                attempts=settings.source_withdraw_attempts,
                backoff_seconds=settings.source_withdraw_backoff_seconds,
                event="source_receipt_retry",
                chain=client.key,
                hashlock=hashlock,
                tx_hash=tx_hash,
            )
            if not receipt.succeeded:
                raise ContractRevertError(
                    f"[{client.key}] withdraw() on {src_escrow} reverted in block {receipt.block_number}",
                    tx_hash=tx_hash,
                )
            return tx_hash
        except RelayerError:
            if not await self._source_settled(client, src_escrow):
                raise
            logger.info(
                "source_already_withdrawn",
                chain=client.key,
                hashlock=hashlock,
                src_escrow=src_escrow,
                tx_hash=tx_hash,
            )
            return tx_hash

    async def _source_settled(self, client: ChainClient, src_escrow: str) -> bool:
        try:
            return not await client.is_active(src_escrow)
        except RelayerError as e:
            logger.warning(
                "source_state_unreadable",
                chain=client.key,
                src_escrow=src_escrow,
                error=str(e),
            )
            return False

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for background withdrawal sequences to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
