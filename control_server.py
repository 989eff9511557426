"""
Control API for TransferWatch.
Serves chain configuration and monitoring controls over HTTP; the monitoring
session runs inside the same event loop.

Usage:
    python main.py

Or with uvicorn:
    uvicorn control_server:app --host 0.0.0.0 --port 8080
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from core.errors import ConfigurationError, PreconditionError, TransientRpcError
from main import TransferWatchApp
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

router = APIRouter()


class ChainConfigRequest(BaseModel):
    """Either structured entries or the "id" / "id:rpc" text format."""
    entries: Optional[List[dict]] = None
    raw: Optional[str] = None


class StartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain_ids: List[int] = Field(alias="chainIds")
    token_allowlist: Optional[List[str]] = Field(default=None, alias="tokenAllowlist")
    counterparty: Optional[str] = None


class AddressRequest(BaseModel):
    address: Optional[str] = None


def _watch(request: Request) -> TransferWatchApp:
    return request.app.state.watch


def _chain_json(chain) -> dict:
    return {
        "id": chain.id,
        "name": chain.display_name,
        "rpc": chain.rpc_endpoint,
        "ws": chain.ws_endpoint,
        "explorer": chain.explorer_url_template,
        "native": chain.native_symbol,
    }


@router.get("/health")
async def health_check(request: Request):
    """Detailed health check."""
    watch = _watch(request)
    return {
        "status": "healthy",
        "database": "connected" if watch.store and watch.store.conn else "disconnected",
        "monitoring": watch.session.state.value,
        "connections": watch.context.pool.get_connection_count(),
    }


@router.get("/chains")
async def list_chains(request: Request):
    return {"chains": [_chain_json(c) for c in _watch(request).get_configured_chains()]}


@router.post("/chains")
async def configure_chains(body: ChainConfigRequest, request: Request):
    """Merge chain overrides; an active session restarts on the new endpoints."""
    if body.entries is None and body.raw is None:
        raise HTTPException(status_code=400, detail="Provide 'entries' or 'raw'")

    watch = _watch(request)
    applied = await watch.apply_chain_configuration(body.raw if body.entries is None else body.entries)
    return {
        "applied": applied,
        "chains": [_chain_json(c) for c in watch.get_configured_chains()],
    }


@router.get("/monitor")
async def monitor_status(request: Request):
    return _watch(request).status()


@router.post("/monitor/start")
async def start_monitoring(body: StartRequest, request: Request):
    watch = _watch(request)
    try:
        report = await watch.start_monitoring(body.chain_ids, body.token_allowlist, body.counterparty)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "started": report.started,
        "alreadyActive": report.already_active,
        "failed": {str(k): v for k, v in report.failed.items()},
        "status": watch.status(),
    }


@router.post("/monitor/stop")
async def stop_monitoring(request: Request):
    watch = _watch(request)
    await watch.stop_monitoring()
    return watch.status()


@router.get("/address")
async def get_address(request: Request):
    return {"address": _watch(request).get_address()}


@router.put("/address")
async def set_address(body: AddressRequest, request: Request):
    watch = _watch(request)
    try:
        await watch.set_watched_address(body.address)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"address": watch.get_address()}


@router.get("/balance/{chain_id}")
async def get_balance(chain_id: int, request: Request):
    try:
        return await _watch(request).get_native_balance(chain_id)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TransientRpcError as e:
        logger.warning(f"Balance query failed on chain {chain_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/activity")
async def recent_activity(request: Request, limit: int = 50, chain_id: Optional[int] = None):
    limit = max(1, min(limit, 500))
    notifications = await _watch(request).recent_activity(limit=limit, chain_id=chain_id)
    return {"transfers": [n.to_message() for n in notifications]}


def create_app(watch: Optional[TransferWatchApp] = None) -> FastAPI:
    """
    Build the control API around a TransferWatchApp.

    The app is set up, auto-started and shut down with the server lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI app."""
        instance = watch
        if instance is None:
            # Started directly by uvicorn rather than main()
            instance = TransferWatchApp()
            setup_logging(log_level=instance.settings.log_level)
        app.state.watch = instance

        logger.info("Starting TransferWatch control server...")
        await instance.setup()
        report = await instance.autostart()
        if report:
            logger.info(f"✅ Auto-started monitoring on {report.started}")

        yield

        logger.info("Shutting down control server...")
        await instance.shutdown()

    app = FastAPI(
        title="TransferWatch Control API",
        description="Configure chains and control incoming-transfer monitoring",
        version="1.0.0",
        lifespan=lifespan
    )
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {
            "status": "ok",
            "service": "TransferWatch Control API",
            "endpoints": {
                "chains": "/chains",
                "monitor": "/monitor",
                "address": "/address",
                "activity": "/activity",
                "health": "/health"
            }
        }

    return app


app = create_app()
