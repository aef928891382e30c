"""
Per-chain log poller.

Each tick reads the chain head once, fetches every watched address's logs
for the blocks since the cursor, and only then decodes and dispatches them.
The cursor advances to the head observed at the start of the tick, and only
when every fetch of the tick succeeded, so an RPC failure never skips a
block and never dispatches part of a range twice.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .config import RelayerConfig
from .db import CursorDatabase
from .decoder import EventDecoder
from .errors import DecodeError, RpcError
from .events import SwapEvent
from .evm import ChainClient
from .models import RawLog, SwapStatus
from .store import SwapRegistry

logger = structlog.get_logger()

Dispatch = Callable[[SwapEvent], Awaitable[None]]


class PollerState(str, Enum):
    INITIALIZING = "initializing"
    POLLING = "polling"
    STOPPED = "stopped"


class ChainPoller:
    def __init__(
        self,
        config: RelayerConfig,
        client: ChainClient,
        registry: SwapRegistry,
        decoder: EventDecoder,
        dispatch: Dispatch,
        cursor_db: Optional[CursorDatabase] = None,
    ):
        self.config = config
        self.client = client
        self.chain = config.chain(client.key)
        self.registry = registry
        self.decoder = decoder
        self.dispatch = dispatch
        self.cursor_db = cursor_db
        self.state = PollerState.INITIALIZING
        self.cursor: Optional[int] = None
        self._stop_event = asyncio.Event()

    @property
    def _settings(self):
        return self.config.settings

    @property
    def key(self) -> str:
        return self.chain.key

    async def initialize(self) -> int:
        """
        Pick the starting cursor.

        Defaults to the current head. With backfill enabled, resumes from the
        persisted cursor when it is no more than ``max_backfill_blocks``
        behind.
        """
        head = await self.client.get_latest_block()
        cursor = head

        if self._settings.backfill_on_restart and self.cursor_db is not None:
            saved = self._load_cursor()
            if saved is not None and saved <= head:
                if head - saved <= self._settings.max_backfill_blocks:
                    cursor = saved
                    logger.info(
                        "poller_backfill",
                        chain=self.key,
                        from_block=saved + 1,
                        head=head,
                    )
                else:
                    logger.warning(
                        "poller_backfill_skipped",
                        chain=self.key,
                        saved_cursor=saved,
                        head=head,
                        max_backfill_blocks=self._settings.max_backfill_blocks,
                    )

        self.cursor = cursor
        self.state = PollerState.POLLING
        logger.info("poller_started", chain=self.key, cursor=cursor, factory=self.chain.factory_address)
        return cursor

    def watched_addresses(self) -> list[str]:
        """The factory plus every deployed destination escrow on this chain."""
        addresses = [self.chain.factory_address]
        seen = {self.chain.factory_address.lower()}
        for record in self.registry.list():
            if not record.dst_deployed or record.status == SwapStatus.COMPLETED:
                continue
            if record.execution_data.dst_chain_id != self.chain.chain_id:
                continue
            if record.dst_escrow.lower() in seen:
                continue
            seen.add(record.dst_escrow.lower())
            addresses.append(record.dst_escrow)
        return addresses

    async def _fetch(self, address: str, start: int, end: int) -> list[RawLog]:
        step = max(self._settings.max_block_range, 1)
        logs: list[RawLog] = []
        for chunk_start in range(start, end + 1, step):
            chunk_end = min(chunk_start + step - 1, end)
            logs.extend(await self.client.get_logs(address, chunk_start, chunk_end))
        return logs

    async def tick(self) -> int:
        """
        Process one block range. Returns the number of events dispatched.

        Raises RpcError without moving the cursor if any read fails.
        """
        if self.cursor is None:
            await self.initialize()

        head = await self.client.get_latest_block()
        if head <= self.cursor:
            return 0

        start = self.cursor + 1
        logs: list[RawLog] = []
        for address in self.watched_addresses():
            logs.extend(await self._fetch(address, start, head))
        logs.sort(key=lambda log: (log.block_number, log.log_index))

        dispatched = 0
        for log in logs:
            try:
                event = self.decoder.decode_typed(log, self.key)
            except DecodeError as e:
                logger.warning(
                    "log_undecodable",
                    chain=self.key,
                    address=log.address,
                    tx_hash=log.transaction_hash,
                    error=str(e),
                )
                continue
            if event is None:
                logger.debug("log_unrecognized", chain=self.key, address=log.address)
                continue

            try:
                await self.dispatch(event)
                dispatched += 1
            except Exception as e:
                logger.error(
                    "event_dispatch_failed",
                    chain=self.key,
                    event_type=type(event).__name__,
                    tx_hash=event.meta.tx_hash,
                    error=str(e),
                )

        self.cursor = head
        self._save_cursor(head)
        logger.info(
            "poller_tick",
            chain=self.key,
            from_block=start,
            to_block=head,
            logs=len(logs),
            events=dispatched,
        )
        return dispatched

    def _load_cursor(self) -> Optional[int]:
        try:
            return self.cursor_db.get_cursor(self.key)
        except SQLAlchemyError as e:
            logger.warning("cursor_load_failed", chain=self.key, error=str(e))
            return None

    def _save_cursor(self, block_number: int) -> None:
        if self.cursor_db is None:
            return
        try:
            self.cursor_db.save_cursor(self.key, block_number)
        except SQLAlchemyError as e:
            logger.warning("cursor_save_failed", chain=self.key, error=str(e))

    async def run(self) -> None:
        """Poll until stopped."""
        logger.info("poller_running", chain=self.key)
        while not self._stop_event.is_set():
            try:
                await self.tick()
                delay = self._settings.poll_interval_seconds
            except RpcError as e:
                logger.warning(
                    "poller_rpc_error",
                    chain=self.key,
                    cursor=self.cursor,
                    retry_in=self._settings.retry_backoff_seconds,
                    error=str(e),
                )
                delay = self._settings.retry_backoff_seconds
            except Exception as e:
                # Cursor is untouched; the same range is retried after the backoff.
                logger.error(
                    "poller_tick_failed",
                    chain=self.key,
                    cursor=self.cursor,
                    retry_in=self._settings.retry_backoff_seconds,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                delay = self._settings.retry_backoff_seconds

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.state = PollerState.STOPPED
        logger.info("poller_stopped", chain=self.key, cursor=self.cursor)

    def stop(self) -> None:
        self._stop_event.set()
        self.state = PollerState.STOPPED
