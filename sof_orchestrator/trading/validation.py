from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from eth_utils import from_wei

from sof_orchestrator.domain.models import ContractAddresses, LedgerSession, SeasonStatus
from sof_orchestrator.ledger.abis import ERC20_ABI, SEASON_GATING_ABI
from sof_orchestrator.lifecycle.checkpoint import read_season
from sof_orchestrator.trading.pricing import read_curve_config

logger = logging.getLogger(__name__)


class ValidationReason(str, Enum):
    OK = "OK"
    GATING_REQUIRED = "GATING_REQUIRED"
    SEASON_NOT_ACTIVE = "SEASON_NOT_ACTIVE"
    TRADING_LOCKED = "TRADING_LOCKED"
    ZERO_BALANCE = "ZERO_BALANCE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: ValidationReason
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"ok": bool(self.ok), "reason": self.reason.value, "message": self.message}


OK = ValidationResult(ok=True, reason=ValidationReason.OK)


@dataclass(frozen=True)
class TradeIntent:
    side: str
    season_id: int
    curve: str | None = None
    # $SOF the buy is expected to cost; unused for sells.
    required_amount: int = 0


def _format_sof(amount: int) -> str:
    value = from_wei(int(amount), "ether")
    text = f"{value:f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def check_gating(gated: bool, verified: bool) -> ValidationResult | None:
    if gated and not verified:
        return ValidationResult(False, ValidationReason.GATING_REQUIRED, "Verification required to trade in this season")
    return None


def check_season_active(status: SeasonStatus, end_time: int, now: float) -> ValidationResult | None:
    # Either signal alone closes the season.
    if status != SeasonStatus.ACTIVE or now >= end_time:
        return ValidationResult(False, ValidationReason.SEASON_NOT_ACTIVE, "Season is not active")
    return None


def check_trading_locked(trading_locked: bool) -> ValidationResult | None:
    if trading_locked:
        return ValidationResult(False, ValidationReason.TRADING_LOCKED, "Trading is locked - Season has ended")
    return None


def check_balance(balance: int, required_amount: int) -> ValidationResult | None:
    if required_amount <= 0:
        return None
    if balance <= 0:
        return ValidationResult(
            False,
            ValidationReason.ZERO_BALANCE,
            "You need $SOF to buy tickets. Visit the faucet or acquire tokens first.",
        )
    if balance < required_amount:
        return ValidationResult(
            False,
            ValidationReason.INSUFFICIENT_BALANCE,
            f"You need at least {_format_sof(required_amount)} $SOF to complete this purchase.",
        )
    return None


# Order matters: the first failing check wins, and the ledger-backed validator
# stops reading as soon as one fails.
ELIGIBILITY_CHECKS = ("gating", "season", "trading_lock", "balance")
MARKET_CHECKS = ("gating", "season", "trading_lock")
FUNDS_CHECKS = ("balance",)

_CHECKS: dict[str, Callable[[dict[str, Any]], ValidationResult | None]] = {
    "gating": lambda f: check_gating(f["gated"], f["verified"]),
    "season": lambda f: check_season_active(f["status"], f["end_time"], f["now"]),
    "trading_lock": lambda f: check_trading_locked(f["trading_locked"]),
    "balance": lambda f: check_balance(f["balance"], f["required_amount"]),
}


def checks_for(side: str, checks: tuple[str, ...] = ELIGIBILITY_CHECKS) -> list[str]:
    """Sells never look at the wallet's $SOF balance."""
    return [name for name in ELIGIBILITY_CHECKS if name in checks and (name != "balance" or side == "buy")]


def evaluate_eligibility(
    *,
    side: str,
    status: SeasonStatus,
    end_time: int,
    now: float,
    trading_locked: bool,
    gated: bool = False,
    verified: bool = True,
    balance: int = 0,
    required_amount: int = 0,
) -> ValidationResult:
    """Decision table for a trade whose facts are already known."""
    facts = {
        "gated": gated,
        "verified": verified,
        "status": status,
        "end_time": end_time,
        "now": now,
        "trading_locked": trading_locked,
        "balance": balance,
        "required_amount": required_amount,
    }
    for name in checks_for(side):
        result = _CHECKS[name](facts)
        if result is not None:
            return result
    return OK


class EligibilityValidator:
    """
    Ledger-backed `evaluate_eligibility`.

    Each check's inputs are read just before the check runs, so an unverified
    wallet never has its balance read. `checks` narrows the run to a subset,
    which lets a caller vet the market before pricing and the wallet after.
    """

    def __init__(self, contracts: ContractAddresses, *, clock: Callable[[], float] = time.time) -> None:
        self.contracts = contracts
        self.clock = clock

    async def _gating(self, session: LedgerSession, season_id: int) -> tuple[bool, bool]:
        gating = self.contracts.season_gating
        if not gating:
            return False, True
        client = session.client
        gate_count = int(await client.read_contract_state(gating, "getGateCount", (season_id,), abi=SEASON_GATING_ABI))
        if gate_count <= 0:
            return False, True
        verified = bool(
            await client.read_contract_state(
                gating, "isUserVerified", (season_id, session.account), abi=SEASON_GATING_ABI
            )
        )
        return True, verified

    async def _load(self, name: str, session: LedgerSession, intent: TradeIntent, facts: dict[str, Any]) -> None:
        if name == "gating":
            facts["gated"], facts["verified"] = await self._gating(session, intent.season_id)
        elif name == "season":
            season = await read_season(session, self.contracts, intent.season_id)
            facts["status"], facts["end_time"] = season.status, season.end_time
            facts["curve"] = intent.curve or season.bonding_curve
        elif name == "trading_lock":
            curve = intent.curve or facts.get("curve")
            if not curve:
                curve = (await read_season(session, self.contracts, intent.season_id)).bonding_curve
            facts["trading_locked"] = (await read_curve_config(session, curve)).trading_locked
        elif name == "balance":
            facts["balance"] = int(
                await session.client.read_contract_state(
                    self.contracts.sof_token, "balanceOf", (session.account,), abi=ERC20_ABI
                )
            )

    async def validate(
        self,
        session: LedgerSession,
        intent: TradeIntent,
        now: float | None = None,
        *,
        checks: tuple[str, ...] = ELIGIBILITY_CHECKS,
    ) -> ValidationResult:
        facts: dict[str, Any] = {
            "now": self.clock() if now is None else now,
            "required_amount": intent.required_amount,
        }
        for name in checks_for(intent.side, checks):
            await self._load(name, session, intent, facts)
            result = _CHECKS[name](facts)
            if result is not None:
                logger.info(f"{intent.side.capitalize()} rejected for {session.account}: {result.reason.value}")
                return result
        return OK
