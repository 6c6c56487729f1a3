from __future__ import annotations

import logging

from sof_orchestrator.domain.models import (
    ContractAddresses,
    LedgerSession,
    LifecycleOutcome,
    LifecycleResult,
    SeasonStatus,
    is_zero_address,
)
from sof_orchestrator.errors.classifier import classify
from sof_orchestrator.errors.types import ConfirmationTimeout, LedgerError, PrerequisiteError, TransactionReverted
from sof_orchestrator.events.notifier import Notifier, balance_keys, season_keys
from sof_orchestrator.ledger.abis import BONDING_CURVE_ABI, PRIZE_DISTRIBUTOR_ABI, RAFFLE_ABI
from sof_orchestrator.lifecycle.checkpoint import read_checkpoint, read_distributor_record, require_prerequisites
from sof_orchestrator.lifecycle.writer import StepWriter
from sof_orchestrator.trading.pricing import read_curve_config

logger = logging.getLogger(__name__)


async def read_grand_winner(session: LedgerSession, contracts: ContractAddresses, season_id: int) -> str | None:
    winners = await session.client.read_contract_state(
        contracts.raffle, "getWinners", (int(season_id),), abi=RAFFLE_ABI
    )
    if not winners or is_zero_address(winners[0]):
        return None
    return str(winners[0])


class DistributorFunder:
    """
    Moves a completed season's prize pool from its curve into the distributor.

    The distributor record is read immediately before each write; a funded record
    means there is nothing to do, however often this is invoked. The distributor's
    token balance is shared between seasons, so it never stands in for this
    season's extraction.
    """

    def __init__(
        self,
        contracts: ContractAddresses,
        notifier: Notifier,
        writer: StepWriter,
        *,
        distributor_role: str = "RAFFLE_ROLE",
    ) -> None:
        self.contracts = contracts
        self.notifier = notifier
        self.writer = writer
        self.distributor_role = distributor_role
        # Confirmed extractSof per season whose fundSeason has not landed yet.
        self._extracted: dict[int, str] = {}

    async def fund(self, session: LedgerSession, season_id: int) -> LifecycleResult:
        tx_ids: list[str] = []
        status: SeasonStatus | None = None

        def result(outcome: LifecycleOutcome, message: str, *, success: bool = True, retryable: bool = False) -> LifecycleResult:
            return LifecycleResult(
                success=success,
                season_id=season_id,
                outcome=outcome,
                message=message,
                status=status,
                transaction_ids=tuple(tx_ids),
                retryable=retryable,
            )

        def step(message: str, name: str) -> None:
            self.notifier.status(message, season_id=season_id, step=name)

        try:
            cp = await read_checkpoint(session, self.contracts, season_id, distributor_role=self.distributor_role)
            status = cp.status
            if status != SeasonStatus.COMPLETED:
                return result(
                    LifecycleOutcome.PENDING,
                    f"Cannot fund: Season not completed yet. Current status: {status.label}",
                    retryable=True,
                )
            require_prerequisites(cp)
            distributor = str(cp.distributor_address)

            step("Checking distributor configuration...", "fund")
            record = await read_distributor_record(session, distributor, season_id)
            if record.funded:
                return result(LifecycleOutcome.ALREADY_FUNDED, "Distributor already funded. No action needed.")

            winner = await read_grand_winner(session, self.contracts, season_id)
            if winner is None and not record.has_winner:
                return result(
                    LifecycleOutcome.PENDING, "No winners found. VRF may not have completed yet.", retryable=True
                )

            amount = cp.total_prize_pool
            if amount <= 0:
                return result(LifecycleOutcome.FAILED, "Season has no prize pool to fund", success=False)

            extracted = self._extracted.get(season_id)
            if extracted is not None:
                logger.info(f"Season {season_id}: prize pool already extracted in {extracted}, funding only")
            else:
                curve = await read_curve_config(session, cp.bonding_curve)
                if curve.reserves < amount:
                    return result(
                        LifecycleOutcome.FAILED,
                        f"Curve reserves ({curve.reserves}) cannot cover the prize pool ({amount}); "
                        "check whether it was already extracted",
                        success=False,
                    )
                step("Extracting SOF from bonding curve...", "extractSof")
                tx_id = await self.writer.write(
                    session,
                    cp.bonding_curve,
                    BONDING_CURVE_ABI,
                    "extractSof",
                    (distributor, amount),
                    season_id=season_id,
                )
                tx_ids.append(tx_id)
                self._extracted[season_id] = tx_id
                step("SOF extracted to distributor", "extractSof")

            record = await read_distributor_record(session, distributor, season_id)
            if record.funded:
                return result(LifecycleOutcome.ALREADY_FUNDED, "Distributor was funded concurrently")

            step("Funding season in distributor...", "fundSeason")
            tx_ids.append(
                await self.writer.write(
                    session,
                    distributor,
                    PRIZE_DISTRIBUTOR_ABI,
                    "fundSeason",
                    (season_id, amount),
                    season_id=season_id,
                )
            )
        except PrerequisiteError as e:
            logger.error(f"Season {season_id}: {e.code}: {e.message}")
            self.notifier.error(e.message, season_id=season_id, step="prerequisites")
            return result(LifecycleOutcome.FATAL, e.message, success=False)
        except ConfirmationTimeout as e:
            if e.transaction_id and e.transaction_id not in tx_ids:
                tx_ids.append(e.transaction_id)
            message = classify(e)
            self.notifier.error(message, e.transaction_id, season_id=season_id, step="fund")
            return result(LifecycleOutcome.UNKNOWN, f"{message}; re-check funding later", success=False, retryable=True)
        except TransactionReverted as e:
            if e.transaction_id:
                tx_ids.append(e.transaction_id)
            message = classify(e)
            self.notifier.error(message, e.transaction_id, season_id=season_id, step="fund")
            return result(LifecycleOutcome.FAILED, f"Error funding distributor: {message}", success=False)
        except LedgerError as e:
            message = classify(e, PRIZE_DISTRIBUTOR_ABI)
            self.notifier.error(message, season_id=season_id, step="fund")
            return result(LifecycleOutcome.FAILED, f"Error funding distributor: {message}", success=False, retryable=True)

        self._extracted.pop(season_id, None)
        step("Season funded successfully!", "fundSeason")
        self.notifier.success(f"Season {season_id} funded", tx_ids[-1], season_id=season_id)
        self.notifier.invalidate(
            *balance_keys(session.network, self.contracts.sof_token, session.account),
            *season_keys(session.network, season_id),
        )
        return result(LifecycleOutcome.FUNDED, "Done! Season fully resolved and funded.")
