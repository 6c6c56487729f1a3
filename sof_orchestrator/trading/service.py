from __future__ import annotations

import logging
from dataclasses import replace

from sof_orchestrator.domain.models import (
    BuyOrder,
    ContractAddresses,
    LedgerSession,
    SellOrder,
    TradeOutcome,
    TradeResult,
)
from sof_orchestrator.errors.classifier import GENERIC_FAILURE, classify
from sof_orchestrator.errors.types import LedgerError
from sof_orchestrator.events.notifier import Notifier
from sof_orchestrator.lifecycle.checkpoint import read_season
from sof_orchestrator.trading.executor import TradeExecutor
from sof_orchestrator.trading.pricing import PriceEstimator
from sof_orchestrator.trading.validation import (
    FUNDS_CHECKS,
    MARKET_CHECKS,
    EligibilityValidator,
    TradeIntent,
    ValidationResult,
)

logger = logging.getLogger(__name__)

QUOTE_UNAVAILABLE = "Unable to price this trade right now"
QUOTE_UNAVAILABLE_CATEGORY = "QUOTE_UNAVAILABLE"


class TradingService:
    """
    Market checks -> estimate -> funds check -> execute.

    A season that is closed or locked is refused before any price read, so the
    caller sees why rather than a pricing failure. Every failure is folded into
    a TradeResult.
    """

    def __init__(
        self,
        contracts: ContractAddresses,
        notifier: Notifier,
        executor: TradeExecutor,
        *,
        estimator: PriceEstimator | None = None,
        validator: EligibilityValidator | None = None,
        default_slippage_pct: str = "1",
    ) -> None:
        self.contracts = contracts
        self.notifier = notifier
        self.executor = executor
        self.estimator = estimator or PriceEstimator()
        self.validator = validator or EligibilityValidator(contracts)
        self.default_slippage_pct = default_slippage_pct

    async def _curve_for(self, session: LedgerSession, season_id: int, curve: str | None) -> str:
        if curve:
            return curve
        return (await read_season(session, self.contracts, season_id)).bonding_curve

    async def buy(
        self,
        session: LedgerSession,
        season_id: int,
        quantity: int,
        *,
        curve: str | None = None,
        slippage_pct: str | None = None,
    ) -> TradeResult:
        slippage = slippage_pct if slippage_pct is not None else self.default_slippage_pct
        try:
            curve = await self._curve_for(session, season_id, curve)
            intent = TradeIntent(side="buy", season_id=season_id, curve=curve)
            verdict = await self.validator.validate(session, intent, checks=MARKET_CHECKS)
            if not verdict.ok:
                return self._refused(verdict)

            quote = await self.estimator.estimate_buy(session, curve, quantity)
            if quote.is_zero:
                return self._rejected(QUOTE_UNAVAILABLE, QUOTE_UNAVAILABLE_CATEGORY)

            verdict = await self.validator.validate(
                session, replace(intent, required_amount=quote.amount_with_fees), checks=FUNDS_CHECKS
            )
            if not verdict.ok:
                return self._refused(verdict)

            return await self.executor.execute_buy(
                session,
                BuyOrder(
                    curve=curve,
                    token_amount=quantity,
                    max_sof_amount=quote.amount_with_fees,
                    slippage_pct=slippage,
                ),
            )
        except LedgerError as e:
            return self._rejected(classify(e))
        except Exception as e:
            logger.exception(f"Buy of {quantity} in season {season_id} failed unexpectedly")
            return self._rejected(str(e) or GENERIC_FAILURE)

    async def sell(
        self,
        session: LedgerSession,
        season_id: int,
        quantity: int,
        *,
        curve: str | None = None,
        slippage_pct: str | None = None,
    ) -> TradeResult:
        slippage = slippage_pct if slippage_pct is not None else self.default_slippage_pct
        try:
            curve = await self._curve_for(session, season_id, curve)
            verdict = await self.validator.validate(
                session, TradeIntent(side="sell", season_id=season_id, curve=curve), checks=MARKET_CHECKS
            )
            if not verdict.ok:
                return self._refused(verdict)

            quote = await self.estimator.estimate_sell(session, curve, quantity)
            if quote.is_zero:
                return self._rejected(QUOTE_UNAVAILABLE, QUOTE_UNAVAILABLE_CATEGORY)

            return await self.executor.execute_sell(
                session,
                SellOrder(
                    curve=curve,
                    token_amount=quantity,
                    min_sof_amount=quote.amount_after_fees,
                    slippage_pct=slippage,
                ),
            )
        except LedgerError as e:
            return self._rejected(classify(e))
        except Exception as e:
            logger.exception(f"Sell of {quantity} in season {season_id} failed unexpectedly")
            return self._rejected(str(e) or GENERIC_FAILURE)

    def _refused(self, verdict: ValidationResult) -> TradeResult:
        return self._rejected(verdict.message, verdict.reason.value)

    def _rejected(self, message: str, category: str | None = None) -> TradeResult:
        self.notifier.error(message, step="trade")
        return TradeResult(False, error=message, outcome=TradeOutcome.REJECTED, error_category=category)
