from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence

from eth_account.signers.local import LocalAccount
from eth_utils import keccak
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from sof_orchestrator.errors.types import (
    ConfirmationTimeout,
    LedgerError,
    ReadError,
    SimulationRevert,
    SubmissionError,
)
from sof_orchestrator.ports.ledger import Receipt, SimulationResult, TxConfig

logger = logging.getLogger(__name__)

RECEIPT_POLL_SECONDS = 0.5


def _revert_data(e: BaseException) -> Any:
    return getattr(e, "data", None)


def _message(e: BaseException) -> str:
    return str(getattr(e, "message", None) or e)


class Web3LedgerClient:
    """
    `LedgerClient` over web3.py's AsyncWeb3.

    Every web3 failure is re-raised as one of the `LedgerError` subclasses; the raw
    exception is kept as `__cause__` for the classifier.
    """

    def __init__(self, w3: AsyncWeb3, account: LocalAccount | None = None) -> None:
        self.w3 = w3
        self.account = account
        # Nonce allocation and broadcast must not interleave for one signer.
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> str | None:
        return self.account.address if self.account is not None else None

    def _function(self, address: str, abi: list[dict[str, Any]], function: str, args: Sequence[Any]):
        contract = self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
        return getattr(contract.functions, function)(*args)

    async def read_contract_state(
        self,
        address: str,
        function: str,
        args: Sequence[Any] = (),
        *,
        abi: list[dict[str, Any]],
        block: int | str | None = None,
    ) -> Any:
        try:
            fn = self._function(address, abi, function, args)
            return await fn.call(block_identifier=block if block is not None else "latest")
        except Exception as e:
            raise ReadError(f"{function}@{address}: {_message(e)}", data=_revert_data(e)) from e

    async def simulate(self, tx: TxConfig) -> SimulationResult:
        params: dict[str, Any] = {"value": int(tx.value)}
        sender = tx.account or self.address
        if sender:
            params["from"] = AsyncWeb3.to_checksum_address(sender)
        try:
            fn = self._function(tx.address, tx.abi, tx.function, tx.args)
            value = await fn.call(params, block_identifier=tx.block if tx.block is not None else "latest")
        except ContractLogicError as e:
            return SimulationResult(
                ok=False,
                error=SimulationRevert(_message(e), data=_revert_data(e)),
            )
        except Exception as e:
            raise ReadError(f"Simulation of {tx.describe()} failed: {_message(e)}", data=_revert_data(e)) from e
        return SimulationResult(ok=True, return_value=value)

    async def submit(self, tx: TxConfig) -> str:
        if self.account is None:
            raise SubmissionError("No signing key configured (set SOF_PRIVATE_KEY)")
        sender = self.account.address
        if tx.account and tx.account.lower() != sender.lower():
            raise SubmissionError(f"Transaction account {tx.account} does not match signer {sender}")

        async with self._send_lock:
            try:
                fn = self._function(tx.address, tx.abi, tx.function, tx.args)
                nonce = await self.w3.eth.get_transaction_count(sender, "pending")
                params = await fn.build_transaction({"from": sender, "nonce": nonce, "value": int(tx.value)})
                signed = self.account.sign_transaction(params)
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                raise SubmissionError(_message(e), data=_revert_data(e)) from e

        tx_id = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"Submitted {tx.describe()} from {sender}: {tx_id}")
        return tx_id

    async def wait_for_confirmation(self, tx_id: str, confirmations: int = 1, *, timeout: float) -> Receipt:
        deadline = time.monotonic() + timeout
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_id, timeout=timeout, poll_latency=RECEIPT_POLL_SECONDS
            )
        except TimeExhausted as e:
            raise ConfirmationTimeout(
                f"Timed out after {timeout:g}s waiting for {tx_id}", transaction_id=tx_id
            ) from e
        except Exception as e:
            raise LedgerError(_message(e), transaction_id=tx_id) from e

        block_number = int(receipt["blockNumber"])
        if confirmations > 1:
            target = block_number + confirmations - 1
            while True:
                try:
                    head = int(await self.w3.eth.block_number)
                except Exception as e:
                    raise LedgerError(_message(e), transaction_id=tx_id) from e
                if head >= target:
                    break
                if time.monotonic() >= deadline:
                    raise ConfirmationTimeout(
                        f"{tx_id} mined in block {block_number} but not {confirmations} confirmations deep",
                        transaction_id=tx_id,
                    )
                await asyncio.sleep(RECEIPT_POLL_SECONDS)

        return Receipt(
            transaction_id=tx_id,
            status="success" if int(receipt["status"]) == 1 else "reverted",
            block_number=block_number,
            gas_used=int(receipt.get("gasUsed") or 0),
            raw=dict(receipt),
        )

    async def get_logs(
        self,
        address: str,
        event_signature: str,
        from_block: int | str = 0,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        topic = AsyncWeb3.to_hex(keccak(text=event_signature))
        try:
            logs = await self.w3.eth.get_logs(
                {
                    "address": AsyncWeb3.to_checksum_address(address),
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "topics": [topic],
                }
            )
        except Exception as e:
            raise ReadError(f"get_logs {event_signature}@{address}: {_message(e)}") from e
        return [dict(log) for log in logs]
