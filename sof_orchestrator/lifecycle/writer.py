from __future__ import annotations

import logging
from typing import Any, Sequence

from sof_orchestrator.domain.models import LedgerSession
from sof_orchestrator.errors.classifier import GENERIC_FAILURE, classify, explain_revert
from sof_orchestrator.errors.types import ConfirmationTimeout, LedgerError, SimulationRevert, TransactionReverted
from sof_orchestrator.events.notifier import Notifier
from sof_orchestrator.ports.ledger import TxConfig

logger = logging.getLogger(__name__)

WAIT_ERROR = "Failed waiting for transaction receipt"


class StepWriter:
    """
    simulate -> submit -> wait for one administrative write.

    Raises the typed ledger errors instead of returning results; the lifecycle
    code maps them to outcomes. Returns the transaction id on a confirmed success.
    """

    def __init__(self, notifier: Notifier, *, confirmations: int = 1, confirmation_timeout: float = 60.0) -> None:
        self.notifier = notifier
        self.confirmations = confirmations
        self.confirmation_timeout = confirmation_timeout

    async def write(
        self,
        session: LedgerSession,
        address: str,
        abi: list[dict[str, Any]],
        function: str,
        args: Sequence[Any] = (),
        *,
        season_id: int | None = None,
    ) -> str:
        client = session.client
        tx = TxConfig(address=address, abi=abi, function=function, args=tuple(args), account=session.account)

        sim = await client.simulate(tx)
        if not sim.ok:
            reason = classify(sim.error, abi)
            raise SimulationRevert(f"{function} would revert: {reason}", short_message=reason) from sim.error

        tx_id = await client.submit(tx)
        self.notifier.status(f"{function} submitted ({tx_id}), waiting for confirmation", season_id=season_id, step=function)

        try:
            receipt = await client.wait_for_confirmation(tx_id, self.confirmations, timeout=self.confirmation_timeout)
        except ConfirmationTimeout as e:
            e.transaction_id = e.transaction_id or tx_id
            raise
        except LedgerError as e:
            message = classify(e, abi)
            raise ConfirmationTimeout(
                WAIT_ERROR if message == GENERIC_FAILURE else message, transaction_id=tx_id
            ) from e

        if not receipt.succeeded:
            reason = await explain_revert(client, tx, receipt.block_number)
            logger.error(f"{tx.describe()} reverted ({tx_id}): {reason}")
            raise TransactionReverted(reason, short_message=reason, transaction_id=tx_id)

        logger.info(f"{tx.describe()} confirmed in block {receipt.block_number} ({tx_id})")
        return tx_id
