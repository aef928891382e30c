"""
Tests for the fulfiller handoff.
"""

import pytest
from structlog.testing import capture_logs

from peerswap_relayer.errors import ContractRevertError, RpcError
from peerswap_relayer.events import SetFulfiller
from peerswap_relayer.handoff import FulfillerHandoff

from fakes import HASHLOCK, RELAYER, SRC_ESCROW, STRANGER, FakeChainClient, make_execution_data

ACTION = SetFulfiller(chain_key="sepolia", src_escrow=SRC_ESCROW, hashlock=HASHLOCK)


@pytest.fixture
def handoff(config, clients) -> FulfillerHandoff:
    return FulfillerHandoff(config, clients)


@pytest.fixture
def deployed(sepolia):
    sepolia.deploy(SRC_ESCROW, make_execution_data())
    return sepolia


class TestPreconditions:
    """Checks performed before setFulfiller is sent."""

    @pytest.mark.asyncio
    async def test_relayer_mismatch_aborts_without_write(self, handoff, deployed) -> None:
        """A factory pointing at another relayer is a configuration error: no tx."""
        deployed.factory_relayer = STRANGER

        with capture_logs() as logs:
            result = await handoff.execute(ACTION)

        assert result.outcome == "aborted"
        assert result.reason == "relayer_address_mismatch"
        assert deployed.sent == []
        mismatch = [log for log in logs if log["event"] == "relayer_address_mismatch"]
        assert mismatch and mismatch[0]["log_level"] == "error"

    @pytest.mark.asyncio
    async def test_missing_bytecode_aborts(self, handoff, sepolia) -> None:
        result = await handoff.execute(ACTION)

        assert result.outcome == "aborted"
        assert result.reason == "src_escrow_missing"
        assert sepolia.sent == []

    @pytest.mark.asyncio
    async def test_inactive_escrow_aborts(self, handoff, deployed) -> None:
        deployed.inactive.add(SRC_ESCROW.lower())

        result = await handoff.execute(ACTION)

        assert result.outcome == "aborted"
        assert result.reason == "escrow_inactive"
        assert deployed.sent == []

    @pytest.mark.asyncio
    async def test_already_set_is_noop(self, handoff, deployed) -> None:
        deployed.deploy(SRC_ESCROW, make_execution_data(fulfiller=RELAYER))

        result = await handoff.execute(ACTION)

        assert result.outcome == "already_set"
        assert deployed.sent == []

    @pytest.mark.asyncio
    async def test_missing_signing_key_aborts(self, config, sepolia, base_sepolia) -> None:
        keyless = FakeChainClient(config.chain("sepolia"), address=None)
        keyless.deploy(SRC_ESCROW, make_execution_data())
        handoff = FulfillerHandoff(config, {"sepolia": keyless, "baseSepolia": base_sepolia})

        result = await handoff.execute(ACTION)

        assert result.outcome == "aborted"
        assert keyless.sent == []


class TestSubmission:
    """setFulfiller submission and verification."""

    @pytest.mark.asyncio
    async def test_submits_set_fulfiller_on_source_factory(self, handoff, deployed, config) -> None:
        with capture_logs() as logs:
            result = await handoff.execute(ACTION)
            await handoff.wait_idle()

        assert result.outcome == "submitted"
        assert result.tx_hash
        [tx] = deployed.sent
        assert tx.fn == "setFulfiller"
        assert tx.to == config.chain("sepolia").factory_address
        assert tx.args[0].lower() == SRC_ESCROW.lower()
        assert tx.args[1] == RELAYER
        assert any(log["event"] == "fulfiller_verified" for log in logs)

    @pytest.mark.asyncio
    async def test_discrepancy_is_logged(self, handoff, deployed) -> None:
        """Verification reports a fulfiller that did not stick."""
        deployed.execution_data[SRC_ESCROW.lower()] = make_execution_data(fulfiller=STRANGER)

        with capture_logs() as logs:
            verified = await handoff.verify(ACTION, RELAYER)

        assert verified is False
        assert any(log["event"] == "fulfiller_discrepancy" for log in logs)

    @pytest.mark.asyncio
    async def test_transient_rpc_error_is_retried(self, handoff, deployed) -> None:
        deployed.fail("relayer_of", RpcError("connection reset"))

        result = await handoff.execute(ACTION)
        await handoff.wait_idle()

        assert result.outcome == "submitted"
        assert deployed.sent_fns() == ["setFulfiller"]

    @pytest.mark.asyncio
    async def test_persistent_rpc_error_fails(self, handoff, deployed) -> None:
        deployed.fail("get_bytecode", *[RpcError("down")] * 3)

        result = await handoff.execute(ACTION)

        assert result.outcome == "failed"
        assert deployed.sent == []

    @pytest.mark.asyncio
    async def test_revert_fails_without_retry(self, handoff, deployed) -> None:
        deployed.fail("write_contract", ContractRevertError("OnlyRelayer"))

        result = await handoff.execute(ACTION)

        assert result.outcome == "failed"
        assert "OnlyRelayer" in result.reason

    @pytest.mark.asyncio
    async def test_revert_is_not_kept_for_rearm(self, handoff, deployed) -> None:
        deployed.fail("write_contract", ContractRevertError("OnlyRelayer"))

        await handoff.execute(ACTION)

        assert handoff.take_failed() == []

    @pytest.mark.asyncio
    async def test_attempts_follow_set_fulfiller_setting(self, settings, handoff, deployed) -> None:
        settings.set_fulfiller_attempts = 1
        settings.source_withdraw_attempts = 5
        deployed.fail("relayer_of", RpcError("connection reset"))

        result = await handoff.execute(ACTION)

        assert result.outcome == "failed"
        assert deployed.sent == []


class TestRearm:
    """Handoffs that ran out of transient retries."""

    @pytest.mark.asyncio
    async def test_failed_handoff_is_kept(self, handoff, deployed) -> None:
        deployed.fail("get_bytecode", *[RpcError("down")] * 3)

        await handoff.execute(ACTION)

        assert handoff.take_failed(HASHLOCK.upper()) == [ACTION]
        assert handoff.take_failed() == []

    @pytest.mark.asyncio
    async def test_success_clears_failed_handoff(self, handoff, deployed) -> None:
        deployed.fail("get_bytecode", *[RpcError("down")] * 3)
        await handoff.execute(ACTION)

        result = await handoff.execute(ACTION)
        await handoff.wait_idle()

        assert result.outcome == "submitted"
        assert handoff.take_failed() == []
