from __future__ import annotations

from typing import Any, Sequence


class LedgerError(Exception):
    """
    Base class for failures coming back from the ledger.

    Carries the optional pieces the classifier looks at, in order: raw revert
    `data`, a `short_message`, `meta_messages`, and the plain message.
    """

    def __init__(
        self,
        message: str = "",
        *,
        short_message: str | None = None,
        meta_messages: Sequence[str] = (),
        data: str | bytes | None = None,
        transaction_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.short_message = short_message
        self.meta_messages = tuple(meta_messages)
        self.data = data
        self.transaction_id = transaction_id


class ReadError(LedgerError):
    """A view call failed (RPC error, missing contract, bad ABI)."""


class SimulationRevert(LedgerError):
    """The pre-flight dry run predicts a revert; nothing was submitted."""


class SubmissionError(LedgerError):
    """The ledger refused the transaction outright."""


class ConfirmationTimeout(LedgerError):
    """No receipt within the bounded wait; the outcome is unknown, not negative."""


class TransactionReverted(LedgerError):
    """Mined with a reverted status; transaction cost has been paid."""


class OrchestratorError(Exception):
    pass


class PrerequisiteError(OrchestratorError):
    """
    Distributor missing or role not granted.

    Needs an out-of-band administrative fix; callers must not retry blindly.
    """

    DISTRIBUTOR_NOT_CONFIGURED = "DISTRIBUTOR_NOT_CONFIGURED"
    ROLE_NOT_GRANTED = "ROLE_NOT_GRANTED"

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class StatusRegressionError(OrchestratorError):
    def __init__(self, season_id: int, previous: Any, current: Any) -> None:
        super().__init__(f"Season {season_id} status moved backwards: {previous!r} -> {current!r}")
        self.season_id = season_id
        self.previous = previous
        self.current = current
