from eth_abi import encode
from eth_utils import keccak

from sof_orchestrator.errors import (
    GENERIC_FAILURE,
    LedgerError,
    SimulationRevert,
    SubmissionError,
    classify,
    decode_revert,
)
from sof_orchestrator.ledger.abis import BONDING_CURVE_ABI, ERC20_ABI, RAFFLE_ABI


def _selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def test_error_string_is_decoded_first():
    data = _selector("Error(string)") + encode(["string"], ["Season is not active"])
    err = SimulationRevert("execution reverted", short_message="ignored", data=_hex(data))
    assert classify(err, RAFFLE_ABI) == "Season is not active"


def test_known_custom_error_gets_friendly_text():
    data = _selector("SlippageExceeded(uint256,uint256)") + encode(["uint256", "uint256"], [10, 9])
    err = SimulationRevert("execution reverted", data=data)
    assert classify(err, BONDING_CURVE_ABI) == "Price slippage exceeded - try increasing slippage tolerance"


def test_unmapped_custom_error_shows_name_and_args():
    data = _selector("ERC20InsufficientAllowance(address,uint256,uint256)") + encode(
        ["address", "uint256", "uint256"], ["0x" + "55" * 20, 0, 100]
    )
    message = classify(SimulationRevert("reverted", data=_hex(data)), ERC20_ABI)
    assert message.startswith("ERC20InsufficientAllowance(")
    assert message.endswith(", 0, 100)")


def test_panic_code():
    data = _selector("Panic(uint256)") + encode(["uint256"], [0x11])
    assert decode_revert([], SimulationRevert("", data=_hex(data))) == "Panic(0x11)"


def test_revert_data_found_on_cause():
    data = _selector("TradingLocked()")

    class RpcError(Exception):
        def __init__(self):
            super().__init__("rpc")
            self.data = {"data": _hex(data)}

    try:
        try:
            raise RpcError()
        except RpcError as inner:
            raise SubmissionError("gas estimation failed") from inner
    except SubmissionError as err:
        assert classify(err, BONDING_CURVE_ABI) == "Trading is locked - Season has ended"


def test_unknown_selector_falls_back_to_short_message():
    err = SimulationRevert("long raw message", short_message="Execution reverted.", data="0xdeadbeef")
    assert classify(err, BONDING_CURVE_ABI) == "Execution reverted."


def test_meta_messages_then_raw_message_then_generic():
    assert classify(LedgerError("raw", meta_messages=["line one", "line two"])) == "line one\nline two"
    assert classify(LedgerError("raw message only")) == "raw message only"
    assert classify(ValueError("plain exception")) == "plain exception"
    assert classify(LedgerError("")) == GENERIC_FAILURE
    assert classify(None) == GENERIC_FAILURE


def test_short_revert_data_is_ignored():
    assert decode_revert(BONDING_CURVE_ABI, SimulationRevert("x", data="0x12")) is None
