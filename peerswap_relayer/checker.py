"""
Deployment-status checker.

Confirms escrow deployment by bytecode presence rather than events. Covers
events the pollers never saw (relayer started after the deployment,
a dropped log, or an inconclusive SrcEscrowCreated verification).
"""

from dataclasses import dataclass
from typing import Mapping, Optional

import structlog

from .config import RelayerConfig
from .errors import ConfigurationError, NotFoundError, RpcError
from .evm import ChainClient
from .models import SwapRecord, SwapStatus
from .store import SwapRegistry, Transition

logger = structlog.get_logger()


@dataclass
class DeploymentStatus:
    src_deployed: bool
    dst_deployed: bool
    transition: Optional[Transition] = None

    @property
    def both_deployed(self) -> bool:
        return self.src_deployed and self.dst_deployed

    @property
    def can_claim(self) -> bool:
        return self.both_deployed


@dataclass
class DeploymentCheckResult:
    hashlock: str
    src_deployed: bool = False
    dst_deployed: bool = False
    both_deployed: bool = False
    error: Optional[str] = None
    transition: Optional[Transition] = None

    def to_json(self) -> dict:
        result = {
            "hashlock": self.hashlock,
            "srcDeployed": self.src_deployed,
            "dstDeployed": self.dst_deployed,
            "bothDeployed": self.both_deployed,
        }
        if self.error:
            result["error"] = self.error
        return result


class DeploymentChecker:
    def __init__(
        self,
        config: RelayerConfig,
        registry: SwapRegistry,
        clients: Mapping[str, ChainClient],
    ):
        self.config = config
        self.registry = registry
        self.clients = clients

    async def _leg_deployed(
        self, record: SwapRecord, chain_id: int, escrow: str, stored: bool, leg: str
    ) -> bool:
        if stored:
            return True
        try:
            client = self.clients[self.config.chain_for_id(chain_id).key]
            return await client.has_code(escrow)
        except (RpcError, ConfigurationError, KeyError) as e:
            logger.warning(
                "deployment_check_leg_failed",
                hashlock=record.hashlock,
                leg=leg,
                escrow=escrow,
                error=str(e),
            )
            return stored

    async def check(self, hashlock: str) -> DeploymentStatus:
        """
        Check both escrows of a swap and record what was found.

        A leg whose query fails keeps its stored flag; flags never go back
        to false.
        """
        record = self.registry.get_by_hashlock(hashlock)
        if record is None:
            raise NotFoundError(hashlock)

        ed = record.execution_data
        src_deployed = await self._leg_deployed(
            record, ed.src_chain_id, record.src_escrow, record.src_deployed, "src"
        )
        dst_deployed = await self._leg_deployed(
            record, ed.dst_chain_id, record.dst_escrow, record.dst_deployed, "dst"
        )

        transition = None
        if src_deployed != record.src_deployed or dst_deployed != record.dst_deployed:
            transition = await self.registry.update(
                hashlock, src_deployed=src_deployed, dst_deployed=dst_deployed
            )

        current = transition.after if transition else record
        logger.info(
            "deployment_checked",
            hashlock=record.hashlock,
            src_deployed=current.src_deployed,
            dst_deployed=current.dst_deployed,
            status=current.status.value,
        )
        return DeploymentStatus(
            src_deployed=current.src_deployed,
            dst_deployed=current.dst_deployed,
            transition=transition,
        )

    async def _check_records(self, records: list[SwapRecord]) -> list[DeploymentCheckResult]:
        results = []
        for record in records:
            try:
                status = await self.check(record.hashlock)
            except NotFoundError as e:
                results.append(DeploymentCheckResult(hashlock=record.hashlock, error=str(e)))
                continue
            results.append(
                DeploymentCheckResult(
                    hashlock=record.hashlock,
                    src_deployed=status.src_deployed,
                    dst_deployed=status.dst_deployed,
                    both_deployed=status.both_deployed,
                    transition=status.transition,
                )
            )
        return results

    async def check_all(self) -> list[DeploymentCheckResult]:
        """Check every swap that has not completed."""
        records = [r for r in self.registry.list() if r.status != SwapStatus.COMPLETED]
        return await self._check_records(records)

    async def check_undeployed(self) -> list[DeploymentCheckResult]:
        """Check only swaps still missing at least one escrow."""
        records = [r for r in self.registry.list() if not r.both_deployed]
        return await self._check_records(records)
