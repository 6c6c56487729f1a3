"""
Minimal ABI fragments for the contracts the orchestrator touches.

Only the functions and custom errors actually called or decoded are listed.
"""

from __future__ import annotations

from typing import Any


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[Any], mutability: str = "view") -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [o if isinstance(o, dict) else {"name": "", "type": o} for o in outputs],
    }


def _err(name: str, inputs: list[tuple[str, str]] | None = None) -> dict[str, Any]:
    return {"type": "error", "name": name, "inputs": [{"name": n, "type": t} for n, t in (inputs or [])]}


ERC20_ABI: list[dict[str, Any]] = [
    _fn("approve", [("spender", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
    _fn("allowance", [("owner", "address"), ("spender", "address")], ["uint256"]),
    _fn("balanceOf", [("account", "address")], ["uint256"]),
    _err("ERC20InsufficientBalance", [("sender", "address"), ("balance", "uint256"), ("needed", "uint256")]),
    _err("ERC20InsufficientAllowance", [("spender", "address"), ("allowance", "uint256"), ("needed", "uint256")]),
]

_CURVE_ERRORS = [
    _err("CurveNotInitialized"),
    _err("CurveAlreadyInitialized"),
    _err("TradingLocked"),
    _err("TradingNotLocked"),
    _err("AmountZero"),
    _err("AmountTooLarge", [("amount", "uint256"), ("max", "uint256")]),
    _err("SlippageExceeded", [("cost", "uint256"), ("maxAllowed", "uint256")]),
    _err("ExceedsMaxSupply", [("requested", "uint256"), ("available", "uint256")]),
    _err("InsufficientReserves", [("required", "uint256"), ("available", "uint256")]),
    _err("InsufficientSupply"),
    _err("InsufficientBalance"),
    _err("InvalidAddress"),
    _err("RaffleNotSet"),
    _err("FeeTooHigh"),
]

BONDING_CURVE_ABI: list[dict[str, Any]] = [
    _fn(
        "curveConfig",
        [],
        ["uint256", "uint256", "uint256", "uint16", "uint16", "bool", "bool"],
    ),
    _fn("calculateBuyPrice", [("tokenAmount", "uint256")], ["uint256"]),
    _fn("calculateSellPrice", [("tokenAmount", "uint256")], ["uint256"]),
    _fn(
        "getBondSteps",
        [],
        [
            {
                "name": "",
                "type": "tuple[]",
                "components": [
                    {"name": "rangeTo", "type": "uint128"},
                    {"name": "price", "type": "uint128"},
                ],
            }
        ],
    ),
    _fn("playerTickets", [("player", "address")], ["uint256"]),
    _fn("buyTokens", [("tokenAmount", "uint256"), ("maxSofAmount", "uint256")], [], "nonpayable"),
    _fn("sellTokens", [("tokenAmount", "uint256"), ("minSofAmount", "uint256")], [], "nonpayable"),
    _fn("extractSof", [("to", "address"), ("amount", "uint256")], [], "nonpayable"),
    *_CURVE_ERRORS,
]

_SEASON_CONFIG = {
    "name": "config",
    "type": "tuple",
    "components": [
        {"name": "name", "type": "string"},
        {"name": "startTime", "type": "uint256"},
        {"name": "endTime", "type": "uint256"},
        {"name": "winnerCount", "type": "uint16"},
        {"name": "grandPrizeBps", "type": "uint16"},
        {"name": "raffleToken", "type": "address"},
        {"name": "bondingCurve", "type": "address"},
        {"name": "isActive", "type": "bool"},
        {"name": "isCompleted", "type": "bool"},
        {"name": "gated", "type": "bool"},
    ],
}

RAFFLE_ABI: list[dict[str, Any]] = [
    _fn(
        "getSeasonDetails",
        [("seasonId", "uint256")],
        [_SEASON_CONFIG, "uint8", "uint256", "uint256", "uint256"],
    ),
    _fn("getVrfRequestForSeason", [("seasonId", "uint256")], ["uint256"]),
    _fn("getWinners", [("seasonId", "uint256")], ["address[]"]),
    _fn("prizeDistributor", [], ["address"]),
    _fn("hasRole", [("role", "bytes32"), ("account", "address")], ["bool"]),
    _fn("requestSeasonEnd", [("seasonId", "uint256")], [], "nonpayable"),
    _fn("requestSeasonEndEarly", [("seasonId", "uint256")], [], "nonpayable"),
    _fn("finalizeSeason", [("seasonId", "uint256")], [], "nonpayable"),
    _err("SeasonNotFound"),
    _err("SeasonNotActive"),
    _err("SeasonNotEnded"),
    _err("SeasonAlreadyStarted"),
    _err("SeasonAlreadyEnded"),
    _err("InvalidSeasonStatus"),
    _err("FactoryNotSet"),
    _err("DistributorNotSet"),
    _err("AccessControlUnauthorizedAccount", [("account", "address"), ("neededRole", "bytes32")]),
]

PRIZE_DISTRIBUTOR_ABI: list[dict[str, Any]] = [
    _fn(
        "getSeason",
        [("seasonId", "uint256")],
        [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "token", "type": "address"},
                    {"name": "grandWinner", "type": "address"},
                    {"name": "grandAmount", "type": "uint256"},
                    {"name": "consolationAmount", "type": "uint256"},
                    {"name": "totalTicketsSnapshot", "type": "uint256"},
                    {"name": "grandWinnerTickets", "type": "uint256"},
                    {"name": "merkleRoot", "type": "bytes32"},
                    {"name": "funded", "type": "bool"},
                    {"name": "grandClaimed", "type": "bool"},
                ],
            }
        ],
    ),
    _fn("hasRole", [("role", "bytes32"), ("account", "address")], ["bool"]),
    _fn("fundSeason", [("seasonId", "uint256"), ("amount", "uint256")], [], "nonpayable"),
    _err("AlreadyFunded"),
    _err("NotConfigured"),
    _err("AccessControlUnauthorizedAccount", [("account", "address"), ("neededRole", "bytes32")]),
]

SEASON_GATING_ABI: list[dict[str, Any]] = [
    _fn("getGateCount", [("seasonId", "uint256")], ["uint256"]),
    _fn("isUserVerified", [("seasonId", "uint256"), ("user", "address")], ["bool"]),
]

# Mock coordinator used on local/test networks only.
VRF_COORDINATOR_ABI: list[dict[str, Any]] = [
    _fn("fulfillRandomWords", [("requestId", "uint256"), ("consumer", "address")], [], "nonpayable"),
]
