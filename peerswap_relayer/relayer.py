"""
PeerSwap relayer service.

Wires the chain clients, registry, pollers and action executors together:

1. One poller per chain decodes factory and escrow logs
2. The reconciler turns events into registry updates and actions
3. SetFulfiller actions go to the fulfiller handoff
4. Withdraw actions and user claims go to the withdrawal orchestrator
5. A periodic sweep confirms deployments by bytecode for missed events
"""

import asyncio
from typing import Any, Mapping, Optional

import structlog

from .checker import DeploymentChecker, DeploymentStatus
from .config import RelayerConfig
from .db import CursorDatabase
from .decoder import EventDecoder
from .errors import ConfigurationError, DecodeError, RpcError
from .events import Action, SetFulfiller, SwapEvent, Withdraw
from .evm import ChainClient
from .handoff import FulfillerHandoff
from .models import ExecutionData, SwapRecord, SwapStatus, now_ms, same_address
from .orchestrator import WithdrawalOrchestrator
from .poller import ChainPoller
from .reconciler import ReconcileResult, Reconciler
from .store import PendingClaimStore, SwapRegistry, Transition

logger = structlog.get_logger()


class PeerSwapRelayer:
    """
    The relayer process.

    Every collaborator can be injected; anything omitted is built from
    ``config``.
    """

    def __init__(
        self,
        config: RelayerConfig,
        registry: Optional[SwapRegistry] = None,
        claims: Optional[PendingClaimStore] = None,
        clients: Optional[Mapping[str, ChainClient]] = None,
        cursor_db: Optional[CursorDatabase] = None,
    ):
        self.config = config
        self.registry = registry if registry is not None else SwapRegistry()
        self.claims = claims if claims is not None else PendingClaimStore()
        if clients is None:
            clients = {
                chain.key: ChainClient(
                    chain,
                    private_key=config.settings.relayer_private_key,
                    gas_limit=config.settings.tx_gas_limit,
                )
                for chain in config.chains
            }
        self.clients = dict(clients)
        self.cursor_db = cursor_db

        self.decoder = EventDecoder()
        self.reconciler = Reconciler(config, self.registry, self.clients)
        self.handoff = FulfillerHandoff(config, self.clients)
        self.orchestrator = WithdrawalOrchestrator(config, self.registry, self.claims, self.clients)
        self.checker = DeploymentChecker(config, self.registry, self.clients)
        self.pollers = [
            ChainPoller(config, self.clients[chain.key], self.registry, self.decoder, self.dispatch, cursor_db)
            for chain in config.chains
            if chain.key in self.clients
        ]

        self._tasks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def relayer_address(self) -> Optional[str]:
        """Signing address, or None when no private key is configured."""
        for client in self.clients.values():
            try:
                return client.address
            except ConfigurationError:
                return None
        return None

    # ------------------------------------------------------------------
    # Swap creation
    # ------------------------------------------------------------------

    async def create_swap(
        self, chain_key: str, factory_address: str, execution_data: ExecutionData
    ) -> SwapRecord:
        """
        Register a swap announced by a client.

        Escrow addresses are computed by the factory on ``chain_key``.
        Raises RpcError/DecodeError when the factory cannot be queried.
        """
        client = self.clients.get(chain_key)
        if client is None:
            raise ConfigurationError(f"Unknown chain key: {chain_key}")

        src_escrow, dst_escrow = await client.escrow_addresses(factory_address, execution_data)
        record = SwapRecord(
            chain_key=chain_key,
            factory_address=factory_address,
            execution_data=execution_data,
            src_escrow=src_escrow,
            dst_escrow=dst_escrow,
            status=SwapStatus.PENDING,
            created_at=now_ms(),
        )
        return await self.registry.upsert(record)

    # ------------------------------------------------------------------
    # Events and actions
    # ------------------------------------------------------------------

    async def dispatch(self, event: SwapEvent) -> ReconcileResult:
        """Reconcile an event and launch its actions in the background."""
        result = await self.reconciler.reconcile(event)
        for action in result.actions:
            self._spawn(self.execute(action))
        return result

    async def execute(self, action: Action) -> Any:
        if isinstance(action, SetFulfiller):
            return await self.handoff.execute(action)
        if isinstance(action, Withdraw):
            return await self.orchestrator.withdraw_source(action)
        raise TypeError(f"Unsupported action: {action!r}")

    def _schedule_handoff(self, transition: Optional[Transition]) -> None:
        for action in self.reconciler.handoff_actions(transition):
            self._spawn(self.execute(action))

    def _rearm_handoffs(self, hashlock: Optional[str] = None) -> None:
        """Run failed handoffs again unless their swap has since completed."""
        for action in self.handoff.take_failed(hashlock):
            record = self.registry.get_by_hashlock(action.hashlock)
            if record is None or record.status == SwapStatus.COMPLETED:
                continue
            logger.info("set_fulfiller_rearmed", chain=action.chain_key, hashlock=action.hashlock)
            self._spawn(self.execute(action))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("action_failed", error=str(error), error_type=type(error).__name__)

    async def wait_idle(self) -> None:
        """Wait until every scheduled action and background sequence is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.orchestrator.wait_idle()
        await self.handoff.wait_idle()

    # ------------------------------------------------------------------
    # Deployment checks
    # ------------------------------------------------------------------

    async def check_deployment(self, hashlock: str) -> DeploymentStatus:
        status = await self.checker.check(hashlock)
        self._schedule_handoff(status.transition)
        self._rearm_handoffs(hashlock)
        return status

    async def check_deployments(self) -> list:
        results = await self.checker.check_all()
        for result in results:
            self._schedule_handoff(result.transition)
        self._rearm_handoffs()
        return results

    async def _deployment_sweep(self) -> None:
        interval = self.config.settings.deployment_check_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                results = await self.checker.check_undeployed()
            except Exception as e:
                logger.error(
                    "deployment_sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            for result in results:
                self._schedule_handoff(result.transition)
            self._rearm_handoffs()
            if results:
                logger.info(
                    "deployment_sweep",
                    checked=len(results),
                    both_deployed=sum(1 for r in results if r.both_deployed),
                )

    # ------------------------------------------------------------------
    # Relayer address check
    # ------------------------------------------------------------------

    async def check_relayer_addresses(self) -> list[dict]:
        """Compare each factory's ``relayer()`` with the signing address."""
        results = []
        for chain in self.config.chains:
            client = self.clients.get(chain.key)
            if client is None:
                continue
            entry: dict[str, Any] = {
                "chainKey": chain.key,
                "chainId": chain.chain_id,
                "factory": chain.factory_address,
            }
            try:
                relayer = client.address
                factory_relayer = await client.relayer_of(chain.factory_address)
            except (ConfigurationError, RpcError, DecodeError) as e:
                entry.update(ok=False, error=str(e))
                logger.warning("relayer_check_failed", chain=chain.key, error=str(e))
                results.append(entry)
                continue

            match = same_address(relayer, factory_relayer)
            entry.update(
                ok=match,
                relayerAddress=relayer,
                factoryRelayer=factory_relayer,
            )
            if match:
                logger.info("relayer_address_ok", chain=chain.key, relayer=relayer)
            else:
                logger.error(
                    "relayer_address_mismatch",
                    chain=chain.key,
                    factory=chain.factory_address,
                    factory_relayer=factory_relayer,
                    relayer=relayer,
                )
            results.append(entry)
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run every poller plus the deployment sweep until stopped."""
        self._running = True
        self._stop_event.clear()
        logger.info("relayer_starting", chains=self.config.chain_keys)
        await self.check_relayer_addresses()

        tasks = [asyncio.create_task(poller.run()) for poller in self.pollers]
        tasks.append(asyncio.create_task(self._deployment_sweep()))
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            self._running = False
            logger.info("relayer_stopped")

    def stop(self) -> None:
        logger.info("relayer_stopping")
        self._stop_event.set()
        for poller in self.pollers:
            poller.stop()
        for task in list(self._tasks):
            task.cancel()
        self.handoff.cancel()
        self.orchestrator.cancel()

    def close(self) -> None:
        if self.cursor_db is not None:
            self.cursor_db.close()
