from __future__ import annotations

import asyncio
import json
import logging
import os
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pandas as pd
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from sof_orchestrator.domain.models import ContractAddresses, LedgerSession
from sof_orchestrator.errors.types import LedgerError, StatusRegressionError
from sof_orchestrator.events.notifier import Notifier
from sof_orchestrator.lifecycle.orchestrator import SeasonLifecycleOrchestrator
from sof_orchestrator.trading.executor import TradeExecutor
from sof_orchestrator.trading.pricing import (
    PriceEstimator,
    buy_cap,
    max_sellable,
    read_curve_config,
    remaining_supply,
    sell_floor,
)
from sof_orchestrator.trading.service import TradingService
from sof_orchestrator.utils.config_loader import load_config
from sof_orchestrator.utils.database import DB_PATH, fetch_events_after, get_events, init_db, ping

logger = logging.getLogger(__name__)

# Thread pool for blocking journal reads so they don't freeze the event loop.
_db_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="db_ro")

_connection = None
_session: LedgerSession | None = None
_notifier: Notifier | None = None
_trading: TradingService | None = None
_lifecycle: SeasonLifecycleOrchestrator | None = None
_estimator = PriceEstimator()


def install_services(session: LedgerSession, cfg: dict[str, Any], *, journal: bool = True) -> None:
    """Wire the trading and lifecycle services around one ledger session."""
    global _session, _notifier, _trading, _lifecycle
    notifier = Notifier(journal=journal)
    executor = TradeExecutor.from_config(cfg, notifier)
    _trading = TradingService(
        ContractAddresses.from_config(cfg),
        notifier,
        executor,
        estimator=_estimator,
        default_slippage_pct=str((cfg.get("trading") or {}).get("default_slippage_pct", "1")),
    )
    _lifecycle = SeasonLifecycleOrchestrator.from_config(cfg, notifier)
    _notifier = notifier
    _session = session


async def _teardown_services() -> None:
    global _session, _notifier, _trading, _lifecycle
    if _trading is not None:
        await _trading.executor.aclose()
    if _notifier is not None:
        _notifier.close()
    _session = _notifier = _trading = _lifecycle = None


def _require_session() -> LedgerSession:
    if _session is None or _trading is None or _lifecycle is None:
        raise HTTPException(status_code=503, detail="Ledger session not ready")
    return _session


def _df_to_records(df: pd.DataFrame) -> list[dict[str, Any]]:
    if df is None or df.empty:
        return []
    # Nullable integer columns (season_id) come back as float NaN, which JSON rejects.
    df = df.astype(object).where(df.notna(), None)
    return jsonable_encoder(df.to_dict(orient="records"))


def _int_field(payload: dict[str, Any], key: str, *, minimum: int = 0) -> int:
    try:
        value = int(payload[key])
    except KeyError as e:
        raise HTTPException(status_code=400, detail=f"Missing field: {key}") from e
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Field {key} must be an integer") from e
    if value < minimum:
        raise HTTPException(status_code=400, detail=f"Field {key} must be >= {minimum}")
    return value


app = FastAPI(
    title="SOF Orchestrator API",
    version="0.1.0",
)


@app.on_event("startup")
async def startup_event():
    global _connection
    init_db()
    if str(os.environ.get("SOF_DISABLE_LEDGER", "")).strip() in {"1", "true", "TRUE", "yes", "YES"}:
        logger.info("Ledger startup skipped (SOF_DISABLE_LEDGER set).")
        return

    from sof_orchestrator.ledger.connection import LedgerConnection

    cfg = load_config()
    _connection = LedgerConnection(cfg)
    if not await _connection.ensure_connected(max_retries=3):
        logger.error("Ledger unreachable at startup; trading and lifecycle endpoints will return 503")
        return
    install_services(_connection.session(), cfg)
    logger.info(f"Ledger session ready on {_connection.network} as {_connection.address}")


@app.on_event("shutdown")
async def shutdown_event():
    global _connection
    await _teardown_services()
    if _connection is not None:
        await _connection.disconnect()
        _connection = None


# Local dev defaults.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a clean JSON 500 instead of a stack trace for anything unhandled."""
    logger.error(f"Unhandled exception: {type(exc).__name__}: {exc}")
    logger.debug(traceback.format_exc())
    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {type(exc).__name__}",
            "message": str(exc)[:200],
        },
    )


async def _run_in_executor(func, *args, timeout_seconds: float = 3.0, **kwargs):
    """
    Run a blocking journal read in the thread pool with a timeout.
    Returns None on timeout or failure so read endpoints degrade instead of hanging.
    """
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(_db_executor, lambda: func(*args, **kwargs)),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Database call timed out after {timeout_seconds}s: {func.__name__}")
        return None
    except Exception as e:
        logger.warning(f"Database call failed: {func.__name__}: {e}")
        return None


@app.get("/api/health")
async def health() -> dict[str, Any]:
    db_ok = False
    db_error = None
    try:
        await asyncio.wait_for(asyncio.get_running_loop().run_in_executor(_db_executor, ping), timeout=3.0)
        db_ok = True
    except Exception as e:
        db_error = str(e) or type(e).__name__

    # Do not leak credentials if using PostgreSQL
    db_path_safe = DB_PATH
    if isinstance(DB_PATH, str) and (DB_PATH.startswith("postgres://") or DB_PATH.startswith("postgresql://")):
        from urllib.parse import urlparse

        u = urlparse(DB_PATH)
        db_path_safe = f"{u.scheme}://{u.hostname or 'localhost'}:{u.port or 5432}/{(u.path or '/').lstrip('/')}"

    return {
        "status": "ok" if db_ok else "degraded",
        "db_path": db_path_safe,
        "db_ok": db_ok,
        "db_error": db_error,
        "ledger_ready": _session is not None,
        "network": _session.network if _session is not None else None,
        "account": _session.account if _session is not None else None,
    }


@app.get("/api/curves/{address}/quote")
async def curve_quote(
    address: str,
    side: str = Query(default="buy", pattern="^(buy|sell)$"),
    quantity: int = Query(..., ge=1),
    slippage_pct: str = Query(default="1"),
) -> dict[str, Any]:
    session = _require_session()
    if side == "buy":
        quote = await _estimator.estimate_buy(session, address, quantity)
        out = quote.to_dict()
        out["max_sof_amount"] = str(buy_cap(quote, slippage_pct))
    else:
        quote = await _estimator.estimate_sell(session, address, quantity)
        out = quote.to_dict()
        out["min_sof_amount"] = str(sell_floor(quote, slippage_pct))
    # A zero quote means the curve could not be read; the trade should be disabled.
    out["available"] = not quote.is_zero
    return out


@app.get("/api/curves/{address}/config")
async def curve_config(address: str) -> dict[str, Any]:
    session = _require_session()
    try:
        cfg = await read_curve_config(session, address)
        remaining = await remaining_supply(session, address)
        sellable = await max_sellable(session, address)
    except LedgerError as e:
        raise HTTPException(status_code=502, detail=f"Curve read failed: {str(e)[:200]}") from e
    out = cfg.to_dict()
    out["remaining_supply"] = str(remaining)
    out["max_sellable"] = str(sellable)
    return out


@app.post("/api/trades/buy")
async def trade_buy(payload: dict[str, Any]) -> dict[str, Any]:
    session = _require_session()
    result = await _trading.buy(
        session,
        _int_field(payload, "season_id"),
        _int_field(payload, "quantity", minimum=1),
        curve=payload.get("curve") or None,
        slippage_pct=payload.get("slippage_pct"),
    )
    return result.to_dict()


@app.post("/api/trades/sell")
async def trade_sell(payload: dict[str, Any]) -> dict[str, Any]:
    session = _require_session()
    result = await _trading.sell(
        session,
        _int_field(payload, "season_id"),
        _int_field(payload, "quantity", minimum=1),
        curve=payload.get("curve") or None,
        slippage_pct=payload.get("slippage_pct"),
    )
    return result.to_dict()


@app.get("/api/seasons/{season_id}/checkpoint")
async def season_checkpoint(season_id: int) -> dict[str, Any]:
    session = _require_session()
    try:
        cp = await _lifecycle.checkpoint(session, season_id)
    except StatusRegressionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except LedgerError as e:
        raise HTTPException(status_code=502, detail=f"Season read failed: {str(e)[:200]}") from e
    return cp.to_dict()


@app.post("/api/seasons/{season_id}/advance")
async def season_advance(season_id: int, early: bool = Query(default=False)) -> dict[str, Any]:
    session = _require_session()
    try:
        result = await _lifecycle.advance(session, season_id, early=early)
    except StatusRegressionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return result.to_dict()


@app.post("/api/seasons/{season_id}/fund")
async def season_fund(season_id: int) -> dict[str, Any]:
    session = _require_session()
    return (await _lifecycle.fund_distributor(session, season_id)).to_dict()


@app.post("/api/seasons/{season_id}/resolve")
async def season_resolve(season_id: int, early: bool = Query(default=False)) -> dict[str, Any]:
    session = _require_session()
    try:
        result = await _lifecycle.resolve(session, season_id, early=early)
    except StatusRegressionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return result.to_dict()


@app.get("/api/history/events")
async def history_events(
    limit: int = Query(default=200, ge=1, le=2000),
    season_id: int | None = Query(default=None),
) -> list[dict[str, Any]]:
    """Journaled notifications and lifecycle status messages, newest first."""
    df = await _run_in_executor(get_events, limit=limit, season_id=season_id)
    return _df_to_records(df)


@app.get("/api/events/stream")
async def events_stream(
    request: Request,
    after_id: int = Query(default=0, ge=0),
    poll_seconds: float = Query(default=1.0, ge=0.2, le=10.0),
):
    """Server-Sent Events feed of the journal, for long-running resolutions."""

    async def _gen():
        last_id = int(after_id)
        # Hint to clients how long to wait before reconnecting (milliseconds).
        yield "retry: 1000\n\n"
        while True:
            if await request.is_disconnected():
                break

            rows = await _run_in_executor(fetch_events_after, last_id)
            if rows:
                for r in rows:
                    last_id = int(r[0])
                    ts = r[1]
                    # PostgreSQL returns datetime objects; JSON needs strings.
                    if hasattr(ts, "isoformat"):
                        ts = ts.isoformat()
                    payload = {
                        "id": int(r[0]),
                        "timestamp": ts,
                        "level": r[2],
                        "season_id": r[3],
                        "step": r[4],
                        "tx_id": r[5],
                        "message": r[6],
                    }
                    yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
            else:
                yield ": keep-alive\n\n"

            await asyncio.sleep(float(poll_seconds))

    return StreamingResponse(
        _gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
