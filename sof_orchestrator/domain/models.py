from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sof_orchestrator.ports.ledger import LedgerClient

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def is_zero_address(address: str | None) -> bool:
    return not address or str(address).lower() == ZERO_ADDRESS


class SeasonStatus(IntEnum):
    """Mirrors the on-chain `SeasonStatus` enum; ordering is meaningful."""

    NOT_STARTED = 0
    ACTIVE = 1
    END_REQUESTED = 2
    VRF_PENDING = 3
    DISTRIBUTING = 4
    COMPLETED = 5

    @property
    def label(self) -> str:
        return {
            SeasonStatus.NOT_STARTED: "NotStarted",
            SeasonStatus.ACTIVE: "Active",
            SeasonStatus.END_REQUESTED: "EndRequested",
            SeasonStatus.VRF_PENDING: "VRFPending",
            SeasonStatus.DISTRIBUTING: "Distributing",
            SeasonStatus.COMPLETED: "Completed",
        }[self]


class TradeOutcome(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    # Wait timed out or failed: the transaction may still land.
    UNKNOWN = "unknown"
    # Rejected locally (validation, simulation, reserves, submission).
    REJECTED = "rejected"


class LifecycleOutcome(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    PENDING = "pending"
    FUNDED = "funded"
    ALREADY_FUNDED = "already_funded"
    FATAL = "fatal"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ContractAddresses:
    sof_token: str
    raffle: str
    prize_distributor: str | None = None
    vrf_coordinator: str | None = None
    season_gating: str | None = None

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> "ContractAddresses":
        contracts = cfg.get("contracts") or {}
        return cls(
            sof_token=str(contracts["sof_token"]),
            raffle=str(contracts["raffle"]),
            prize_distributor=contracts.get("prize_distributor") or None,
            vrf_coordinator=contracts.get("vrf_coordinator") or None,
            season_gating=contracts.get("season_gating") or None,
        )


@dataclass(frozen=True)
class LedgerSession:
    """Explicit wallet/network context handed to every orchestrator call."""

    account: str
    chain_id: int
    client: "LedgerClient"
    network: str = "LOCAL"


@dataclass(frozen=True)
class Season:
    season_id: int
    name: str
    start_time: int
    end_time: int
    status: SeasonStatus
    total_tickets: int
    total_prize_pool: int
    bonding_curve: str
    raffle_token: str | None = None
    is_gated: bool = False

    @property
    def label(self) -> str:
        return self.status.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_id": int(self.season_id),
            "name": self.name,
            "start_time": int(self.start_time),
            "end_time": int(self.end_time),
            "status": int(self.status),
            "status_label": self.status.label,
            "total_tickets": str(self.total_tickets),
            "total_prize_pool": str(self.total_prize_pool),
            "bonding_curve": self.bonding_curve,
            "raffle_token": self.raffle_token,
            "is_gated": bool(self.is_gated),
        }


@dataclass(frozen=True)
class CurveConfig:
    total_supply: int
    reserves: int
    current_step: int
    buy_fee_bps: int
    sell_fee_bps: int
    trading_locked: bool
    initialized: bool

    @classmethod
    def from_tuple(cls, raw: Any) -> "CurveConfig":
        # curveConfig() -> (totalSupply, sofReserves, currentStep, buyFee, sellFee, tradingLocked, initialized)
        return cls(
            total_supply=int(raw[0]),
            reserves=int(raw[1]),
            current_step=int(raw[2]),
            buy_fee_bps=int(raw[3] or 0),
            sell_fee_bps=int(raw[4] or 0),
            trading_locked=bool(raw[5]),
            initialized=bool(raw[6]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_supply": str(self.total_supply),
            "reserves": str(self.reserves),
            "current_step": int(self.current_step),
            "buy_fee_bps": int(self.buy_fee_bps),
            "sell_fee_bps": int(self.sell_fee_bps),
            "trading_locked": bool(self.trading_locked),
            "initialized": bool(self.initialized),
        }


@dataclass(frozen=True)
class BondStep:
    range_to: int
    price: int


@dataclass(frozen=True)
class BuyQuote:
    quantity: int
    base_amount: int
    amount_with_fees: int

    @classmethod
    def zero(cls, quantity: int = 0) -> "BuyQuote":
        return cls(quantity=quantity, base_amount=0, amount_with_fees=0)

    @property
    def is_zero(self) -> bool:
        return self.base_amount == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": "buy",
            "quantity": int(self.quantity),
            "base_amount": str(self.base_amount),
            "amount_with_fees": str(self.amount_with_fees),
        }


@dataclass(frozen=True)
class SellQuote:
    quantity: int
    base_amount: int
    amount_after_fees: int

    @classmethod
    def zero(cls, quantity: int = 0) -> "SellQuote":
        return cls(quantity=quantity, base_amount=0, amount_after_fees=0)

    @property
    def is_zero(self) -> bool:
        return self.base_amount == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": "sell",
            "quantity": int(self.quantity),
            "base_amount": str(self.base_amount),
            "amount_after_fees": str(self.amount_after_fees),
        }


@dataclass(frozen=True)
class BuyOrder:
    curve: str
    token_amount: int
    max_sof_amount: int
    slippage_pct: str | float = "1"


@dataclass(frozen=True)
class SellOrder:
    curve: str
    token_amount: int
    min_sof_amount: int
    slippage_pct: str | float = "1"


@dataclass(frozen=True)
class TradeResult:
    success: bool
    transaction_id: str | None = None
    error: str | None = None
    outcome: TradeOutcome = TradeOutcome.CONFIRMED
    # Machine-readable cause for refusals, e.g. TRADING_LOCKED.
    error_category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": bool(self.success), "outcome": self.outcome.value}
        if self.transaction_id:
            out["transactionId"] = self.transaction_id
        if self.error:
            out["error"] = self.error
        if self.error_category:
            out["errorCategory"] = self.error_category
        return out


@dataclass(frozen=True)
class DistributorSeasonRecord:
    token: str
    grand_winner: str
    grand_amount: int
    consolation_amount: int
    total_tickets_snapshot: int
    grand_winner_tickets: int
    merkle_root: bytes | str | None
    funded: bool
    grand_claimed: bool

    @classmethod
    def from_tuple(cls, raw: Any) -> "DistributorSeasonRecord":
        return cls(
            token=str(raw[0]),
            grand_winner=str(raw[1]),
            grand_amount=int(raw[2]),
            consolation_amount=int(raw[3]),
            total_tickets_snapshot=int(raw[4]),
            grand_winner_tickets=int(raw[5]),
            merkle_root=raw[6],
            funded=bool(raw[7]),
            grand_claimed=bool(raw[8]),
        )

    @property
    def has_winner(self) -> bool:
        return not is_zero_address(self.grand_winner)


@dataclass(frozen=True)
class LifecycleCheckpoint:
    """Working snapshot of one season; rebuilt before every lifecycle step."""

    season_id: int
    status: SeasonStatus
    end_time: int
    total_prize_pool: int
    bonding_curve: str
    vrf_request_id: int | None = None
    distributor_address: str | None = None
    distributor_configured: bool = False
    role_granted: bool = False

    @property
    def prerequisites_met(self) -> bool:
        return self.distributor_configured and self.role_granted

    def to_dict(self) -> dict[str, Any]:
        return {
            "season_id": int(self.season_id),
            "status": int(self.status),
            "status_label": self.status.label,
            "end_time": int(self.end_time),
            "total_prize_pool": str(self.total_prize_pool),
            "bonding_curve": self.bonding_curve,
            "vrf_request_id": None if self.vrf_request_id is None else str(self.vrf_request_id),
            "distributor_address": self.distributor_address,
            "distributor_configured": bool(self.distributor_configured),
            "role_granted": bool(self.role_granted),
        }


@dataclass(frozen=True)
class LifecycleResult:
    success: bool
    season_id: int
    outcome: LifecycleOutcome
    message: str
    status: SeasonStatus | None = None
    transaction_ids: tuple[str, ...] = ()
    retryable: bool = False

    @property
    def writes(self) -> int:
        return len(self.transaction_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": bool(self.success),
            "season_id": int(self.season_id),
            "outcome": self.outcome.value,
            "message": self.message,
            "status": None if self.status is None else int(self.status),
            "status_label": None if self.status is None else self.status.label,
            "transaction_ids": list(self.transaction_ids),
            "retryable": bool(self.retryable),
        }


@dataclass(frozen=True)
class Notification:
    type: str
    message: str
    transaction_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "transactionId": self.transaction_id or ""}
