"""
Tests for the bytecode-based deployment checker.
"""

import pytest

from peerswap_relayer.checker import DeploymentChecker, DeploymentCheckResult
from peerswap_relayer.errors import NotFoundError, RpcError
from peerswap_relayer.models import SwapStatus

from fakes import DST_ESCROW, HASHLOCK, SRC_ESCROW, make_execution_data, make_record


@pytest.fixture
def checker(config, registry, clients) -> DeploymentChecker:
    return DeploymentChecker(config, registry, clients)


class TestCheck:
    @pytest.mark.asyncio
    async def test_unknown_hashlock(self, checker) -> None:
        with pytest.raises(NotFoundError):
            await checker.check(HASHLOCK)

    @pytest.mark.asyncio
    async def test_bytecode_sets_both_flags(self, checker, registry, sepolia, base_sepolia) -> None:
        await registry.upsert(make_record())
        sepolia.deploy(SRC_ESCROW)
        base_sepolia.deploy(DST_ESCROW)

        status = await checker.check(HASHLOCK)

        assert status.both_deployed and status.can_claim
        assert status.transition.became_both_deployed
        record = registry.get_by_hashlock(HASHLOCK)
        assert record.src_deployed and record.dst_deployed
        assert record.status == SwapStatus.FULFILLED

    @pytest.mark.asyncio
    async def test_each_leg_checked_on_its_own_chain(self, checker, registry, sepolia, base_sepolia) -> None:
        """Destination bytecode on the source chain does not count."""
        await registry.upsert(make_record())
        sepolia.deploy(DST_ESCROW)

        status = await checker.check(HASHLOCK)

        assert not status.src_deployed
        assert not status.dst_deployed
        assert status.transition is None

    @pytest.mark.asyncio
    async def test_rpc_failure_keeps_stored_flag(self, checker, registry, sepolia, base_sepolia) -> None:
        await registry.upsert(make_record())
        sepolia.deploy(SRC_ESCROW)
        base_sepolia.deploy(DST_ESCROW)
        sepolia.fail("get_bytecode", RpcError("timeout"))

        status = await checker.check(HASHLOCK)

        assert not status.src_deployed
        assert status.dst_deployed
        assert not status.transition.became_both_deployed

    @pytest.mark.asyncio
    async def test_flags_never_regress(self, checker, registry) -> None:
        """Stored flags stand even when bytecode is no longer found."""
        await registry.upsert(make_record(src_deployed=True, dst_deployed=True))

        status = await checker.check(HASHLOCK)

        assert status.both_deployed
        assert status.transition is None

    @pytest.mark.asyncio
    async def test_unwatched_chain_is_inconclusive(self, checker, registry, sepolia) -> None:
        await registry.upsert(make_record(execution_data=make_execution_data(dst_chain_id=1)))
        sepolia.deploy(SRC_ESCROW)

        status = await checker.check(HASHLOCK)

        assert status.src_deployed
        assert not status.dst_deployed


class TestSweeps:
    @pytest.mark.asyncio
    async def test_check_all_skips_completed(self, checker, registry, sepolia) -> None:
        await registry.upsert(make_record())
        done = make_execution_data(hashlock="0x" + "77" * 32)
        await registry.upsert(make_record(execution_data=done, status=SwapStatus.COMPLETED))

        results = await checker.check_all()

        assert [r.hashlock for r in results] == [HASHLOCK]

    @pytest.mark.asyncio
    async def test_check_undeployed_skips_both_deployed(self, checker, registry, sepolia, base_sepolia) -> None:
        await registry.upsert(make_record(src_deployed=True, dst_deployed=True))
        pending = make_execution_data(hashlock="0x" + "88" * 32)
        await registry.upsert(make_record(execution_data=pending, dst_escrow="0x" + "89" * 20))
        base_sepolia.deploy("0x" + "89" * 20)

        results = await checker.check_undeployed()

        assert len(results) == 1
        assert results[0].hashlock == pending.hashlock
        assert results[0].dst_deployed and not results[0].src_deployed
        assert results[0].transition is not None


class TestResultJson:
    def test_camel_case(self) -> None:
        result = DeploymentCheckResult(hashlock=HASHLOCK, src_deployed=True)
        assert result.to_json() == {
            "hashlock": HASHLOCK,
            "srcDeployed": True,
            "dstDeployed": False,
            "bothDeployed": False,
        }

    def test_error_included_when_set(self) -> None:
        result = DeploymentCheckResult(hashlock=HASHLOCK, error="boom")
        assert result.to_json()["error"] == "boom"
