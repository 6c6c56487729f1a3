"""
Fee and slippage arithmetic plus ledger-backed quotes for the bonding curve.

All amounts are integer wei; every division floors. Quotes are recomputed on
each call; nothing here caches curve state between blocks.
"""

from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from sof_orchestrator.domain.models import BondStep, BuyQuote, CurveConfig, LedgerSession, SellQuote, is_zero_address
from sof_orchestrator.ledger.abis import BONDING_CURVE_ABI

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000


def calculate_amount_with_fees(base_amount: int, fee_bps: int) -> int:
    if not base_amount:
        return 0
    return base_amount + (base_amount * int(fee_bps or 0)) // BPS_DENOMINATOR


def calculate_amount_after_fees(base_amount: int, fee_bps: int) -> int:
    if not base_amount:
        return 0
    fee = (base_amount * int(fee_bps or 0)) // BPS_DENOMINATOR
    return base_amount - fee if fee <= base_amount else 0


def slippage_to_bps(slippage_pct: str | float | int | None) -> int | None:
    """'1' -> 100, '0.5' -> 50. Returns None for anything that is not a finite number."""
    if slippage_pct is None or isinstance(slippage_pct, bool):
        return None
    try:
        pct = Decimal(str(slippage_pct).strip())
    except (InvalidOperation, ValueError):
        return None
    if not pct.is_finite():
        return None
    bps = int((pct * 100).to_integral_value(rounding=ROUND_FLOOR))
    return max(0, min(BPS_DENOMINATOR, bps))


def apply_max_slippage(amount: int, slippage_pct: str | float | int | None) -> int:
    bps = slippage_to_bps(slippage_pct)
    if bps is None:
        return amount
    return (amount * (BPS_DENOMINATOR + bps)) // BPS_DENOMINATOR


def apply_min_slippage(amount: int, slippage_pct: str | float | int | None) -> int:
    bps = slippage_to_bps(slippage_pct)
    if bps is None:
        return amount
    return (amount * (BPS_DENOMINATOR - bps)) // BPS_DENOMINATOR


def buy_cap(quote: BuyQuote, slippage_pct: str | float | int | None) -> int:
    return apply_max_slippage(quote.amount_with_fees, slippage_pct)


def sell_floor(quote: SellQuote, slippage_pct: str | float | int | None) -> int:
    return apply_min_slippage(quote.amount_after_fees, slippage_pct)


async def read_curve_config(session: LedgerSession, curve: str) -> CurveConfig:
    raw = await session.client.read_contract_state(curve, "curveConfig", abi=BONDING_CURVE_ABI)
    return CurveConfig.from_tuple(raw)


async def read_bond_steps(session: LedgerSession, curve: str) -> list[BondStep]:
    raw = await session.client.read_contract_state(curve, "getBondSteps", abi=BONDING_CURVE_ABI)
    return [BondStep(range_to=int(s[0]), price=int(s[1])) for s in raw or []]


async def remaining_supply(session: LedgerSession, curve: str) -> int:
    """Tickets still buyable: last step's `rangeTo` minus what has been sold."""
    steps = await read_bond_steps(session, curve)
    if not steps:
        return 0
    cfg = await read_curve_config(session, curve)
    return max(0, steps[-1].range_to - cfg.total_supply)


async def max_sellable(session: LedgerSession, curve: str, account: str | None = None) -> int:
    raw = await session.client.read_contract_state(
        curve, "playerTickets", (account or session.account,), abi=BONDING_CURVE_ABI
    )
    return int(raw or 0)


class PriceEstimator:
    """
    Quotes buys and sells against a curve.

    A failed read yields a zero quote so callers can disable the trade instead of crashing.
    """

    async def estimate_buy(self, session: LedgerSession, curve: str, quantity: int) -> BuyQuote:
        if quantity <= 0 or is_zero_address(curve):
            return BuyQuote.zero(quantity)
        try:
            base = int(
                await session.client.read_contract_state(
                    curve, "calculateBuyPrice", (int(quantity),), abi=BONDING_CURVE_ABI
                )
            )
            cfg = await read_curve_config(session, curve)
        except Exception as e:
            logger.warning(f"Buy quote failed for {quantity} on {curve}: {e}")
            return BuyQuote.zero(quantity)
        return BuyQuote(
            quantity=quantity,
            base_amount=base,
            amount_with_fees=calculate_amount_with_fees(base, cfg.buy_fee_bps),
        )

    async def estimate_sell(self, session: LedgerSession, curve: str, quantity: int) -> SellQuote:
        if quantity <= 0 or is_zero_address(curve):
            return SellQuote.zero(quantity)
        try:
            base = int(
                await session.client.read_contract_state(
                    curve, "calculateSellPrice", (int(quantity),), abi=BONDING_CURVE_ABI
                )
            )
            cfg = await read_curve_config(session, curve)
        except Exception as e:
            logger.warning(f"Sell quote failed for {quantity} on {curve}: {e}")
            return SellQuote.zero(quantity)
        return SellQuote(
            quantity=quantity,
            base_amount=base,
            amount_after_fees=calculate_amount_after_fees(base, cfg.sell_fee_bps),
        )
