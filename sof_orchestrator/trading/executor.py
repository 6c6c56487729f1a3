from __future__ import annotations

import asyncio
import logging

from sof_orchestrator.domain.models import (
    BuyOrder,
    ContractAddresses,
    LedgerSession,
    SellOrder,
    TradeOutcome,
    TradeResult,
)
from sof_orchestrator.errors.classifier import GENERIC_FAILURE, classify, explain_revert
from sof_orchestrator.errors.types import LedgerError
from sof_orchestrator.events.notifier import InvalidationKey, Notifier, balance_keys, position_keys
from sof_orchestrator.ledger.abis import BONDING_CURVE_ABI, ERC20_ABI
from sof_orchestrator.ports.ledger import TxConfig
from sof_orchestrator.trading.pricing import apply_max_slippage, apply_min_slippage, read_curve_config

logger = logging.getLogger(__name__)

MAX_ALLOWANCE = 2**255 - 1

SELL_RESERVE_ERROR = "Insufficient curve reserves - cannot sell this amount"
RESERVE_READ_ERROR = "Unable to read curve reserves"
WAIT_ERROR = "Failed waiting for transaction receipt"


class TradeExecutor:
    """
    Runs approve -> simulate -> submit -> wait for buys and sells.

    Nothing is retried: a mined revert has already cost gas, and a timed-out wait
    may still land, so the only follow-up is a delayed best-effort refresh.
    """

    def __init__(
        self,
        contracts: ContractAddresses,
        notifier: Notifier,
        *,
        confirmations: int = 1,
        confirmation_timeout: float = 60.0,
        refresh_delay: float = 2.0,
    ) -> None:
        self.contracts = contracts
        self.notifier = notifier
        self.confirmations = confirmations
        self.confirmation_timeout = confirmation_timeout
        self.refresh_delay = refresh_delay
        self._refresh_tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, cfg: dict, notifier: Notifier) -> "TradeExecutor":
        trading = cfg.get("trading") or {}
        return cls(
            ContractAddresses.from_config(cfg),
            notifier,
            confirmations=int(trading.get("confirmations", 1)),
            confirmation_timeout=float(trading.get("confirmation_timeout_seconds", 60)),
            refresh_delay=float(trading.get("refresh_delay_seconds", 2.0)),
        )

    @property
    def pending_refreshes(self) -> int:
        return len(self._refresh_tasks)

    async def execute_buy(self, session: LedgerSession, order: BuyOrder) -> TradeResult:
        cap = apply_max_slippage(order.max_sof_amount, order.slippage_pct)
        keys = self._trade_keys(session, order.curve)

        failure = await self._ensure_allowance(session, order.curve, cap)
        if failure is not None:
            return failure

        tx = TxConfig(
            address=order.curve,
            abi=BONDING_CURVE_ABI,
            function="buyTokens",
            args=(int(order.token_amount), cap),
            account=session.account,
        )
        tx_id, failure = await self._transact(session, tx, keys)
        if failure is not None:
            return failure

        self.notifier.success(f"Purchased {order.token_amount} tickets", tx_id, step="buy")
        self.notifier.invalidate(*keys)
        return TradeResult(success=True, transaction_id=tx_id, outcome=TradeOutcome.CONFIRMED)

    async def execute_sell(self, session: LedgerSession, order: SellOrder) -> TradeResult:
        floor = apply_min_slippage(order.min_sof_amount, order.slippage_pct)
        keys = self._trade_keys(session, order.curve)

        try:
            cfg = await read_curve_config(session, order.curve)
        except LedgerError as e:
            logger.warning(f"Reserve check failed for {order.curve}: {e}")
            return self._reject(RESERVE_READ_ERROR)
        if cfg.reserves < order.min_sof_amount:
            return self._reject(SELL_RESERVE_ERROR)

        tx = TxConfig(
            address=order.curve,
            abi=BONDING_CURVE_ABI,
            function="sellTokens",
            args=(int(order.token_amount), floor),
            account=session.account,
        )
        tx_id, failure = await self._transact(session, tx, keys)
        if failure is not None:
            return failure

        self.notifier.success(f"Sold {order.token_amount} tickets", tx_id, step="sell")
        self.notifier.invalidate(*keys)
        return TradeResult(success=True, transaction_id=tx_id, outcome=TradeOutcome.CONFIRMED)

    async def aclose(self) -> None:
        """Cancel delayed refreshes that have not fired yet."""
        tasks = list(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._refresh_tasks.clear()

    async def _ensure_allowance(self, session: LedgerSession, curve: str, amount: int) -> TradeResult | None:
        sof = self.contracts.sof_token
        try:
            allowance = int(
                await session.client.read_contract_state(
                    sof, "allowance", (session.account, curve), abi=ERC20_ABI
                )
            )
        except LedgerError as e:
            logger.warning(f"Allowance read failed, approving anyway: {e}")
            allowance = 0
        if allowance >= amount:
            return None

        self.notifier.status("Approving $SOF for the bonding curve", step="approve")
        approve = TxConfig(
            address=sof,
            abi=ERC20_ABI,
            function="approve",
            args=(curve, MAX_ALLOWANCE),
            account=session.account,
        )
        _, failure = await self._transact(session, approve, [], simulate=False)
        return failure

    async def _transact(
        self,
        session: LedgerSession,
        tx: TxConfig,
        keys: list[InvalidationKey],
        *,
        simulate: bool = True,
    ) -> tuple[str | None, TradeResult | None]:
        """Send one transaction and wait for it. Returns (tx_id, None) on a confirmed success."""
        client = session.client

        if simulate:
            try:
                sim = await client.simulate(tx)
            except LedgerError as e:
                logger.error(f"Simulation of {tx.describe()} failed: {e}")
                return None, self._reject(classify(e, tx.abi))
            if not sim.ok:
                return None, self._reject(classify(sim.error, tx.abi))

        try:
            tx_id = await client.submit(tx)
        except LedgerError as e:
            logger.error(f"Submission of {tx.describe()} failed: {e}")
            return None, self._reject(classify(e, tx.abi))

        try:
            receipt = await client.wait_for_confirmation(
                tx_id, self.confirmations, timeout=self.confirmation_timeout
            )
        except Exception as e:
            message = classify(e, tx.abi)
            if message == GENERIC_FAILURE:
                message = WAIT_ERROR
            logger.warning(f"Outcome of {tx.describe()} ({tx_id}) unknown: {message}")
            self.notifier.error(message, tx_id, step=tx.function)
            self._schedule_refresh(keys, tx_id)
            return tx_id, TradeResult(False, transaction_id=tx_id, error=message, outcome=TradeOutcome.UNKNOWN)

        if not receipt.succeeded:
            reason = await explain_revert(client, tx, receipt.block_number)
            logger.error(f"{tx.describe()} reverted in block {receipt.block_number}: {reason}")
            self.notifier.error(reason, tx_id, step=tx.function)
            return tx_id, TradeResult(False, transaction_id=tx_id, error=reason, outcome=TradeOutcome.REVERTED)

        return tx_id, None

    def _reject(self, message: str) -> TradeResult:
        self.notifier.error(message, step="trade")
        return TradeResult(False, error=message, outcome=TradeOutcome.REJECTED)

    def _trade_keys(self, session: LedgerSession, curve: str) -> list[InvalidationKey]:
        return [
            *balance_keys(session.network, self.contracts.sof_token, session.account),
            *position_keys(session.network, curve, session.account),
            ("allSeasons",),
        ]

    def _schedule_refresh(self, keys: list[InvalidationKey], tx_id: str) -> None:
        if not keys:
            return
        task = asyncio.get_running_loop().create_task(self._delayed_refresh(keys, tx_id))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _delayed_refresh(self, keys: list[InvalidationKey], tx_id: str) -> None:
        await asyncio.sleep(self.refresh_delay)
        logger.info(f"Refreshing state after unknown outcome of {tx_id}")
        self.notifier.invalidate(*keys)
