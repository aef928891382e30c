"""
PeerSwap API - HTTP surface of the relayer.

Provides REST endpoints for:
- Registering swaps (POST /swaps)
- Listing swaps (GET /swaps)
- Submitting claim secrets (POST /claim)
- Swap deployment status (GET /swap-status/{hashlock})
- Deployment sweep (POST /check-deployments)
- Factory relayer check (GET /check-relayer)
- Health checks (GET /health)
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from peerswap_relayer.config import RelayerConfig, Settings, get_settings
from peerswap_relayer.db import CursorDatabase
from peerswap_relayer.errors import (
    ClaimRejected,
    ConfigurationError,
    DecodeError,
    NotFoundError,
    RpcError,
)
from peerswap_relayer.models import SwapStatus
from peerswap_relayer.relayer import PeerSwapRelayer

from . import __version__
from .auth import require_operator_token
from .models import (
    CheckDeploymentsResponse,
    CheckRelayerResponse,
    ClaimRequest,
    ClaimResponse,
    CreateSwapRequest,
    CreateSwapResponse,
    HealthResponse,
    SwapStatusResponse,
)

# Configure logging
logging.basicConfig(format="%(message)s", level=logging.INFO)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

router = APIRouter()


def get_relayer(request: Request) -> PeerSwapRelayer:
    relayer = getattr(request.app.state, "relayer", None)
    if relayer is None:
        raise HTTPException(status_code=503, detail="Relayer not initialized")
    return relayer


# ============================================================================
# Health Check
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(relayer: PeerSwapRelayer = Depends(get_relayer)) -> HealthResponse:
    """Relayer status and number of tracked swaps."""
    return HealthResponse(
        ok=True,
        version=__version__,
        swaps=relayer.registry.count(),
        relayer_address=relayer.relayer_address,
    )


# ============================================================================
# Swaps
# ============================================================================


@router.post("/swaps", response_model=CreateSwapResponse)
async def create_swap(
    request: CreateSwapRequest,
    relayer: PeerSwapRelayer = Depends(get_relayer),
):
    """
    Register a swap.

    Escrow addresses are computed by the factory; the swap starts pending.
    """
    try:
        record = await relayer.create_swap(
            request.chain_key,
            request.factory_address,
            request.to_execution_data(),
        )
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (RpcError, DecodeError) as e:
        logger.error("swap_registration_failed", chain=request.chain_key, error=str(e))
        return JSONResponse(
            status_code=502,
            content=CreateSwapResponse(ok=False, error=str(e)).model_dump(by_alias=True),
        )

    return CreateSwapResponse(ok=True, src_escrow=record.src_escrow, dst_escrow=record.dst_escrow)


@router.get("/swaps")
async def list_swaps(
    status: Optional[SwapStatus] = None,
    relayer: PeerSwapRelayer = Depends(get_relayer),
) -> list[dict]:
    """Tracked swaps, optionally filtered by status."""
    return [record.to_json() for record in relayer.registry.list(status)]


# ============================================================================
# Claim
# ============================================================================


@router.post("/claim", response_model=ClaimResponse)
async def claim(
    request: ClaimRequest,
    relayer: PeerSwapRelayer = Depends(get_relayer),
) -> ClaimResponse:
    """
    Accept the asker's secret and start the withdrawal.

    The withdrawal runs in the background; its outcome shows up in the
    swap's status.
    """
    try:
        relayer.orchestrator.submit_claim(request.secret, request.hashlock, request.user_address)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ClaimRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return ClaimResponse(success=True, message="Claim accepted; withdrawal in progress")


# ============================================================================
# Status
# ============================================================================


@router.get("/swap-status/{hashlock}", response_model=SwapStatusResponse)
async def swap_status(
    hashlock: str,
    relayer: PeerSwapRelayer = Depends(get_relayer),
) -> SwapStatusResponse:
    """Check both escrows on-chain and report the swap's state."""
    try:
        deployment = await relayer.check_deployment(hashlock)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    record = relayer.registry.get_by_hashlock(hashlock)
    return SwapStatusResponse(
        hashlock=record.hashlock,
        src_escrow=record.src_escrow,
        dst_escrow=record.dst_escrow,
        src_deployed=deployment.src_deployed,
        dst_deployed=deployment.dst_deployed,
        both_deployed=deployment.both_deployed,
        can_claim=deployment.can_claim,
        status=record.status.value,
    )


@router.post(
    "/check-deployments",
    response_model=CheckDeploymentsResponse,
    dependencies=[Depends(require_operator_token)],
)
async def check_deployments(
    relayer: PeerSwapRelayer = Depends(get_relayer),
) -> CheckDeploymentsResponse:
    """Re-check deployment of every swap that has not completed."""
    results = await relayer.check_deployments()
    return CheckDeploymentsResponse(
        success=True,
        message=f"Checked {len(results)} swaps",
        results=[r.to_json() for r in results],
    )


@router.get("/check-relayer", response_model=CheckRelayerResponse)
async def check_relayer(
    relayer: PeerSwapRelayer = Depends(get_relayer),
) -> CheckRelayerResponse:
    """Compare each factory's relayer() with the signing address."""
    results = await relayer.check_relayer_addresses()
    return CheckRelayerResponse(
        success=all(r.get("ok") for r in results),
        relayers=results,
    )


# ============================================================================
# App factory
# ============================================================================


def create_app(
    relayer: Optional[PeerSwapRelayer] = None,
    run_relayer: Optional[bool] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API.

    Without an injected relayer the app builds its own from settings at
    startup, runs it and closes it at shutdown. An injected relayer is run
    only when ``run_relayer`` is true.
    """
    settings = settings or get_settings()
    owns_relayer = relayer is None
    if run_relayer is None:
        run_relayer = owns_relayer

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if app.state.relayer is None:
            app.state.relayer = PeerSwapRelayer(
                RelayerConfig.from_settings(settings),
                cursor_db=CursorDatabase(settings.database_url),
            )
        service: PeerSwapRelayer = app.state.relayer

        task = asyncio.create_task(service.run()) if run_relayer else None
        logger.info(
            "api_started",
            version=__version__,
            host=settings.host,
            port=settings.port,
            chains=service.config.chain_keys,
        )

        yield

        if task is not None:
            service.stop()
            await asyncio.gather(task, return_exceptions=True)
        if owns_relayer:
            service.close()
        logger.info("api_stopped")

    app = FastAPI(
        title="PeerSwap Relayer API",
        description="HTTP surface of the PeerSwap cross-chain HTLC relayer",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.relayer = relayer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server with an embedded relayer."""
    settings = get_settings()
    uvicorn.run(
        "peerswap_api.main:app",
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    run()
