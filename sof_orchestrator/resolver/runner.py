from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Awaitable, Callable

from sof_orchestrator.domain.models import LedgerSession, LifecycleOutcome, LifecycleResult
from sof_orchestrator.events.notifier import Notifier
from sof_orchestrator.lifecycle.orchestrator import SeasonLifecycleOrchestrator
from sof_orchestrator.utils.config_loader import load_config
from sof_orchestrator.utils.database import close_write_conn, init_db

logger = logging.getLogger(__name__)

DONE_OUTCOMES = (LifecycleOutcome.FUNDED, LifecycleOutcome.ALREADY_FUNDED)


async def resolve_until_done(
    orchestrator: SeasonLifecycleOrchestrator,
    session: LedgerSession,
    season_id: int,
    *,
    early: bool = False,
    once: bool = False,
    max_attempts: int = 40,
    poll_interval: float = 15.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> LifecycleResult:
    """
    Call `resolve` until the season is funded, a non-retryable failure occurs,
    or attempts run out.
    """
    result: LifecycleResult | None = None
    for attempt in range(1, max(1, max_attempts) + 1):
        result = await orchestrator.resolve(session, season_id, early=early)
        logger.info(
            f"Season {season_id} pass {attempt}/{max_attempts}: {result.outcome.value} - {result.message}"
        )
        if result.outcome in DONE_OUTCOMES or not result.retryable or once:
            return result
        await sleep(poll_interval)
    logger.warning(f"Season {season_id} still unresolved after {max_attempts} passes")
    return result


def exit_code(result: LifecycleResult) -> int:
    if result.outcome in DONE_OUTCOMES:
        return 0
    if result.retryable:
        return 2
    return 1


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve a season: end it, settle randomness, finalize and fund.")
    parser.add_argument("--season", type=int, required=True, help="Season id to resolve")
    parser.add_argument("--early", action="store_true", help="End an active season before its end time")
    parser.add_argument("--once", action="store_true", help="Run a single pass instead of polling")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    from sof_orchestrator.ledger.connection import LedgerConnection

    cfg = load_config(config_path=args.config)
    lifecycle_cfg = cfg.get("lifecycle", {}) or {}

    conn = LedgerConnection(config=cfg)
    if not await conn.ensure_connected():
        logger.error("Could not reach the ledger. Exiting.")
        return 1

    notifier = Notifier(journal=True)
    orchestrator = SeasonLifecycleOrchestrator.from_config(cfg, notifier)
    try:
        result = await resolve_until_done(
            orchestrator,
            conn.session(),
            args.season,
            early=args.early,
            once=args.once,
            max_attempts=int(lifecycle_cfg.get("max_resolve_attempts", 40)),
            poll_interval=float(lifecycle_cfg.get("poll_interval_seconds", 15)),
        )
    finally:
        notifier.close()
        await conn.disconnect()

    logger.info(f"Season {args.season}: {result.outcome.value} - {result.message}")
    for tx_id in result.transaction_ids:
        logger.info(f"  tx {tx_id}")
    return exit_code(result)


def main(argv: list[str] | None = None) -> int:
    # Configure logging (idempotent; safe if configured elsewhere).
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)

    # Initialise journal schema (idempotent).
    init_db()
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted; the season can be resumed by running again.")
        return 130
    finally:
        close_write_conn()
