from sof_orchestrator.errors.classifier import GENERIC_FAILURE, REVERTED_FAILURE, classify, decode_revert, explain_revert
from sof_orchestrator.errors.types import (
    ConfirmationTimeout,
    LedgerError,
    OrchestratorError,
    PrerequisiteError,
    ReadError,
    SimulationRevert,
    StatusRegressionError,
    SubmissionError,
    TransactionReverted,
)

__all__ = [
    "GENERIC_FAILURE",
    "classify",
    "decode_revert",
    "explain_revert",
    "REVERTED_FAILURE",
    "ConfirmationTimeout",
    "LedgerError",
    "OrchestratorError",
    "PrerequisiteError",
    "ReadError",
    "SimulationRevert",
    "StatusRegressionError",
    "SubmissionError",
    "TransactionReverted",
]
