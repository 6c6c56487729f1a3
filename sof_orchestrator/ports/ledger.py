from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Protocol, Sequence

from sof_orchestrator.errors.types import LedgerError


@dataclass(frozen=True)
class TxConfig:
    address: str
    abi: list[dict[str, Any]]
    function: str
    args: tuple[Any, ...] = ()
    account: str | None = None
    value: int = 0
    # Only meaningful for simulate(): replay the call against a past block.
    block: int | str | None = None

    def at_block(self, block: int | str | None) -> "TxConfig":
        return replace(self, block=block)

    def describe(self) -> str:
        return f"{self.function}@{self.address}"


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    error: LedgerError | None = None
    return_value: Any = None


@dataclass(frozen=True)
class Receipt:
    transaction_id: str
    status: str
    block_number: int | None = None
    gas_used: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def reverted(self) -> bool:
        return self.status == "reverted"


class LedgerClient(Protocol):
    async def read_contract_state(
        self,
        address: str,
        function: str,
        args: Sequence[Any] = (),
        *,
        abi: list[dict[str, Any]],
        block: int | str | None = None,
    ) -> Any: ...

    async def simulate(self, tx: TxConfig) -> SimulationResult: ...

    async def submit(self, tx: TxConfig) -> str: ...

    async def wait_for_confirmation(self, tx_id: str, confirmations: int = 1, *, timeout: float) -> Receipt: ...

    async def get_logs(
        self,
        address: str,
        event_signature: str,
        from_block: int | str = 0,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]: ...
