"""
FastAPI server: strategy registration, listing and manual triggers.
Runs the periodic strategy sweep in the background.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Literal, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .config import settings
from .registry import StrategyRegistry
from .scheduler import RebalanceScheduler

logger = logging.getLogger(__name__)

_started_at = time.monotonic()


# ── Models ────────────────────────────────────────────────────────────────────

class StrategyRequest(BaseModel):
    userId: Optional[str] = None
    protectedDataAddress: Optional[str] = None
    walletAddress: Optional[str] = None


class CompletionRequest(BaseModel):
    status: Literal["completed", "failed"]


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ── App ───────────────────────────────────────────────────────────────────────

def create_app(
    registry: Optional[StrategyRegistry] = None,
    scheduler: Optional[RebalanceScheduler] = None,
) -> FastAPI:
    """Build the app. Without an injected registry the lifespan builds one
    backed by the iExec launcher and starts the sweep.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop_task = None
        launcher = None
        if app.state.registry is None:
            from .iexec import IExecDealLauncher

            launcher = IExecDealLauncher(settings)
            app.state.registry = StrategyRegistry(
                launcher,
                cooldown=settings.trigger_cooldown_seconds,
                deal_timeout=settings.deal_timeout_seconds,
            )
            app.state.scheduler = RebalanceScheduler(
                app.state.registry, settings.rebalancing_interval / 1000
            )
            loop_task = asyncio.create_task(app.state.scheduler.start())
            logger.info(
                f"Rebalancing interval: {settings.rebalancing_interval} ms",
                extra={"iexec_app": settings.iexec_app_address or "NOT CONFIGURED"},
            )

        yield

        if loop_task is not None:
            await app.state.scheduler.stop()
            loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await loop_task
        if launcher is not None:
            await launcher.close()
        logger.info("Rebalancer API shut down")

    app = FastAPI(
        title="Fusion Rebalancer API",
        version=__version__,
        description="WETH/USDC 50/50 rebalancing through 1inch Fusion",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return _error(400, f"Invalid request: {exc.errors()}")

    # ── Routes ────────────────────────────────────────────────────────────────

    @app.get("/")
    async def status(request: Request):
        reg: StrategyRegistry = request.app.state.registry
        return {
            "status": "running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "strategies": len(reg),
            "activeDeals": reg.active_deals,
            "iexecConfigured": bool(reg.launcher.configured),
        }

    @app.get("/health")
    async def health():
        return {
            "healthy": True,
            "uptime": round(time.monotonic() - _started_at, 3),
            "version": __version__,
        }

    @app.post("/strategy")
    async def store_strategy(req: StrategyRequest, request: Request):
        if not req.userId or not req.protectedDataAddress or not req.walletAddress:
            return _error(400, "Missing required fields: userId, protectedDataAddress, walletAddress")

        strategy = request.app.state.registry.register(
            req.userId, req.protectedDataAddress, req.walletAddress
        )
        return {
            "success": True,
            "message": "Strategy stored successfully",
            "strategy": strategy.model_dump(),
        }

    @app.get("/strategies")
    async def list_strategies(request: Request):
        return {"strategies": [s.model_dump() for s in request.app.state.registry.list()]}

    @app.post("/trigger/{user_id}")
    async def trigger(user_id: str, request: Request):
        reg: StrategyRegistry = request.app.state.registry
        if reg.get(user_id) is None:
            return _error(404, f"No strategy found for user {user_id}")

        result = await reg.trigger(user_id)
        return {"success": True, "message": "iExec rebalancing triggered", "result": result.value}

    @app.post("/strategy/{user_id}/complete")
    async def complete(user_id: str, req: CompletionRequest, request: Request):
        reg: StrategyRegistry = request.app.state.registry
        if reg.get(user_id) is None:
            return _error(404, f"No strategy found for user {user_id}")

        strategy = reg.complete(user_id, req.status)
        return {"success": True, "strategy": strategy.model_dump()}

    return app


app = create_app()
