"""
Tests for the HTTP API.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from peerswap_api.main import create_app
from peerswap_relayer.config import Settings, get_settings
from peerswap_relayer.errors import RpcError
from peerswap_relayer.models import SwapStatus

from fakes import (
    ASKER,
    DST_ESCROW,
    HASHLOCK,
    PREDICTED_DST_ESCROW,
    RELAYER,
    SECRET,
    SRC_ESCROW,
    STRANGER,
    make_execution_data,
    make_record,
)

FACTORY = "0xA26D2Ee1d536b0E17240c8c32D7e894578e21148"


@pytest.fixture
def client(relayer, settings):
    app = create_app(relayer=relayer, settings=settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def seeded(registry):
    """Registry holding one pending swap."""
    return asyncio.run(registry.upsert(make_record()))


def _swap_body(**overrides) -> dict:
    body = {
        "chainKey": "sepolia",
        "factoryAddress": FACTORY,
        "executionData": make_execution_data().to_json(),
    }
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, client, seeded) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["swaps"] == 1
        assert data["relayerAddress"] == RELAYER

    def test_relayer_not_initialized(self, settings) -> None:
        """Requests before the lifespan has built a relayer get 503."""
        app = create_app(relayer=None, settings=settings)
        response = TestClient(app).get("/health")

        assert response.status_code == 503


class TestSwaps:
    def test_create_swap(self, client, registry) -> None:
        response = client.post("/swaps", json=_swap_body())

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["srcEscrow"] == SRC_ESCROW
        assert data["dstEscrow"] == PREDICTED_DST_ESCROW
        assert registry.get_by_hashlock(HASHLOCK).status == SwapStatus.PENDING

    def test_accepts_decimal_string_amounts(self, client, registry) -> None:
        execution_data = make_execution_data().to_json()
        execution_data["askerAmount"] = "1000000"

        response = client.post("/swaps", json=_swap_body(executionData=execution_data))

        assert response.status_code == 200
        assert registry.get_by_hashlock(HASHLOCK).execution_data.asker_amount == 1_000_000

    def test_factory_query_failure_is_502(self, client, sepolia, registry) -> None:
        sepolia.fail("escrow_addresses", RpcError("execution reverted"))

        response = client.post("/swaps", json=_swap_body())

        assert response.status_code == 502
        assert response.json()["ok"] is False
        assert registry.count() == 0

    def test_unknown_chain_is_400(self, client) -> None:
        response = client.post("/swaps", json=_swap_body(chainKey="mainnet"))
        assert response.status_code == 400

    def test_missing_execution_field_is_422(self, client) -> None:
        execution_data = make_execution_data().to_json()
        del execution_data["hashlock"]

        response = client.post("/swaps", json=_swap_body(executionData=execution_data))

        assert response.status_code == 422

    def test_list_and_filter(self, client, seeded) -> None:
        all_swaps = client.get("/swaps").json()
        pending = client.get("/swaps", params={"status": "pending"}).json()
        completed = client.get("/swaps", params={"status": "completed"}).json()

        assert [s["executionData"]["hashlock"] for s in all_swaps] == [HASHLOCK]
        assert len(pending) == 1
        assert completed == []

    def test_invalid_status_filter_is_422(self, client) -> None:
        response = client.get("/swaps", params={"status": "bogus"})
        assert response.status_code == 422


class TestClaim:
    def _claim(self, client, **overrides):
        body = {"secret": SECRET, "hashlock": HASHLOCK, "userAddress": ASKER}
        body.update(overrides)
        return client.post("/claim", json=body)

    def test_unknown_swap_is_404(self, client) -> None:
        assert self._claim(client).status_code == 404

    def test_wrong_secret_is_400(self, client, seeded, journal) -> None:
        response = self._claim(client, secret="0x" + "01" * 32)

        assert response.status_code == 400
        assert journal == []

    def test_not_asker_is_403(self, client, seeded) -> None:
        assert self._claim(client, userAddress=STRANGER).status_code == 403

    def test_accepted(self, client, seeded) -> None:
        response = self._claim(client)

        assert response.status_code == 200
        assert response.json()["success"] is True


class TestSwapStatus:
    def test_unknown_swap_is_404(self, client) -> None:
        assert client.get(f"/swap-status/{HASHLOCK}").status_code == 404

    def test_reports_bytecode_deployment(self, client, seeded, sepolia, base_sepolia) -> None:
        sepolia.deploy(SRC_ESCROW, make_execution_data())
        base_sepolia.deploy(DST_ESCROW)

        response = client.get(f"/swap-status/{HASHLOCK}")

        assert response.status_code == 200
        data = response.json()
        assert data["srcDeployed"] is True
        assert data["dstDeployed"] is True
        assert data["bothDeployed"] is True
        assert data["canClaim"] is True
        assert data["status"] == "fulfilled"

    def test_partial_deployment(self, client, seeded, sepolia) -> None:
        sepolia.deploy(SRC_ESCROW)

        data = client.get(f"/swap-status/{HASHLOCK}").json()

        assert data["srcDeployed"] is True
        assert data["canClaim"] is False
        assert data["status"] == "pending"


class TestOperatorEndpoints:
    def test_check_deployments_open_without_token(self, client, seeded) -> None:
        response = client.post("/check-deployments")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "Checked 1 swaps"
        assert data["results"][0]["hashlock"] == HASHLOCK

    def test_check_deployments_requires_configured_token(self, client, seeded) -> None:
        client.app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None, api_token="s3cret")

        assert client.post("/check-deployments").status_code == 401
        assert client.post("/check-deployments", headers={"X-API-Key": "wrong"}).status_code == 401
        assert client.post("/check-deployments", headers={"X-API-Key": "s3cret"}).status_code == 200

        client.app.dependency_overrides.clear()

    def test_public_routes_ignore_operator_token(self, client, seeded) -> None:
        client.app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None, api_token="s3cret")

        assert client.get("/swaps").status_code == 200
        assert client.get(f"/swap-status/{HASHLOCK}").status_code == 200

        client.app.dependency_overrides.clear()

    def test_check_relayer(self, client) -> None:
        data = client.get("/check-relayer").json()

        assert data["success"] is True
        assert [r["chainKey"] for r in data["relayers"]] == ["sepolia", "baseSepolia"]

    def test_check_relayer_mismatch(self, client, base_sepolia) -> None:
        base_sepolia.factory_relayer = STRANGER

        data = client.get("/check-relayer").json()

        assert data["success"] is False
