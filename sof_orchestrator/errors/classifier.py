from __future__ import annotations

import logging
from typing import Any, Iterable

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_bytes

from sof_orchestrator.errors.types import LedgerError

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Transaction failed"

_ERROR_STRING_SELECTOR = keccak(text="Error(string)")[:4]
_PANIC_SELECTOR = keccak(text="Panic(uint256)")[:4]

# Friendly text for custom errors raised by the curve / raffle contracts.
CONTRACT_ERROR_MAP: dict[str, str] = {
    "CurveNotInitialized": "Bonding curve not initialized",
    "CurveAlreadyInitialized": "Bonding curve already initialized",
    "TradingLocked": "Trading is locked - Season has ended",
    "TradingNotLocked": "Trading is not locked",
    "AmountZero": "Amount must be greater than 0",
    "AmountTooLarge": "Amount is too large",
    "SlippageExceeded": "Price slippage exceeded - try increasing slippage tolerance",
    "ExceedsMaxSupply": "Purchase would exceed maximum supply",
    "InsufficientReserves": "Insufficient reserves in bonding curve",
    "InsufficientSupply": "Insufficient supply to sell",
    "InsufficientBalance": "Insufficient balance",
    "InvalidAddress": "Invalid address provided",
    "RaffleNotSet": "Raffle contract not set",
    "FeeTooHigh": "Fee is too high",
    "SeasonNotFound": "Season not found",
    "SeasonNotActive": "Season is not active",
    "SeasonNotEnded": "Season has not ended",
    "SeasonAlreadyStarted": "Season already started",
    "SeasonAlreadyEnded": "Season already ended",
    "InvalidSeasonStatus": "Invalid season status",
    "FactoryNotSet": "Season factory not set",
    "DistributorNotSet": "Prize distributor not set",
}


def _abi_type(param: dict[str, Any]) -> str:
    typ = str(param.get("type", ""))
    if typ.startswith("tuple"):
        inner = ",".join(_abi_type(c) for c in param.get("components") or [])
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _error_selectors(abi: Iterable[dict[str, Any]]) -> dict[bytes, dict[str, Any]]:
    out: dict[bytes, dict[str, Any]] = {}
    for entry in abi or []:
        if entry.get("type") != "error":
            continue
        types = [_abi_type(i) for i in entry.get("inputs") or []]
        signature = f"{entry['name']}({','.join(types)})"
        out[keccak(text=signature)[:4]] = {"name": entry["name"], "types": types}
    return out


def extract_error_data(error: BaseException | None) -> bytes | None:
    """Look for revert data on the error itself, then up to two levels of causes."""
    current: Any = error
    for _ in range(3):
        if current is None:
            return None
        data = getattr(current, "data", None)
        if isinstance(data, dict):
            data = data.get("data")
        if data:
            try:
                raw = to_bytes(hexstr=data) if isinstance(data, str) else bytes(data)
            except (TypeError, ValueError):
                raw = b""
            if len(raw) >= 4:
                return raw
        current = getattr(current, "__cause__", None)
    return None


def decode_revert(abi: Iterable[dict[str, Any]] | None, error: BaseException | None) -> str | None:
    """Decode revert data against `abi`. Returns None when nothing usable is found."""
    data = extract_error_data(error)
    if not data:
        return None

    selector, payload = data[:4], data[4:]
    try:
        if selector == _ERROR_STRING_SELECTOR:
            (reason,) = abi_decode(["string"], payload)
            return str(reason) or None
        if selector == _PANIC_SELECTOR:
            (code,) = abi_decode(["uint256"], payload)
            return f"Panic(0x{int(code):02x})"

        entry = _error_selectors(abi or []).get(selector)
        if entry is None:
            return None
        name = entry["name"]
        if name in CONTRACT_ERROR_MAP:
            return CONTRACT_ERROR_MAP[name]
        values = abi_decode(entry["types"], payload) if entry["types"] else ()
        args = ", ".join(str(v) for v in values)
        return f"{name}({args})" if args else name
    except Exception as e:
        logger.debug(f"Revert data could not be decoded: {e}")
        return None


def classify(error: BaseException | None, abi: Iterable[dict[str, Any]] | None = None) -> str:
    """
    Turn a ledger failure into a human-readable string.

    Strict precedence: ABI-decoded revert, short message, meta messages,
    raw message, generic failure.
    """
    decoded = decode_revert(abi, error)
    if decoded:
        return decoded

    short = getattr(error, "short_message", None)
    if short:
        return str(short)

    meta = [str(m) for m in (getattr(error, "meta_messages", None) or ()) if m]
    if meta:
        return "\n".join(meta)

    message = getattr(error, "message", None)
    if not message and error is not None:
        message = str(error)
    if message:
        return str(message)

    return GENERIC_FAILURE


REVERTED_FAILURE = "Transaction reverted"


async def explain_revert(client: Any, tx: Any, block: int | None) -> str:
    """
    Recover the reason for a mined revert by replaying the call at its block.

    `client` is a LedgerClient and `tx` a TxConfig; the receipt itself carries no reason.
    """
    try:
        sim = await client.simulate(tx.at_block(block))
    except LedgerError as e:
        logger.debug(f"Revert replay failed for {tx.describe()}: {e}")
        return REVERTED_FAILURE
    if sim.ok or sim.error is None:
        return REVERTED_FAILURE
    message = classify(sim.error, tx.abi)
    return REVERTED_FAILURE if message == GENERIC_FAILURE else message
