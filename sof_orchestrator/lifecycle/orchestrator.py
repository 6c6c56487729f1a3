"""
Season resolution state machine.

Every pass starts from a fresh `LifecycleCheckpoint`; nothing observed before a
write is trusted after it. Status may only move forward, and a confirmed write is
always followed by a re-read rather than an assumed transition.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from sof_orchestrator.domain.models import (
    ContractAddresses,
    LedgerSession,
    LifecycleCheckpoint,
    LifecycleOutcome,
    LifecycleResult,
    SeasonStatus,
)
from sof_orchestrator.errors.classifier import classify
from sof_orchestrator.errors.types import (
    ConfirmationTimeout,
    LedgerError,
    PrerequisiteError,
    SimulationRevert,
    StatusRegressionError,
    SubmissionError,
    TransactionReverted,
)
from sof_orchestrator.events.notifier import Notifier, season_keys
from sof_orchestrator.ledger.abis import RAFFLE_ABI, VRF_COORDINATOR_ABI
from sof_orchestrator.lifecycle.checkpoint import is_randomness_fulfilled, read_checkpoint, require_prerequisites
from sof_orchestrator.lifecycle.funding import DistributorFunder
from sof_orchestrator.lifecycle.writer import StepWriter

logger = logging.getLogger(__name__)

_FAILED_OUTCOMES = (LifecycleOutcome.FATAL, LifecycleOutcome.FAILED, LifecycleOutcome.UNKNOWN)


class SeasonLifecycleOrchestrator:
    def __init__(
        self,
        contracts: ContractAddresses,
        notifier: Notifier,
        *,
        confirmations: int = 1,
        confirmation_timeout: float = 60.0,
        distributor_role: str = "RAFFLE_ROLE",
        fulfill_mock_vrf: bool = False,
        finalize_poll_attempts: int = 5,
        finalize_poll_interval: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.contracts = contracts
        self.notifier = notifier
        self.distributor_role = distributor_role
        self.fulfill_mock_vrf = fulfill_mock_vrf
        self.finalize_poll_attempts = max(1, int(finalize_poll_attempts))
        self.finalize_poll_interval = finalize_poll_interval
        self.clock = clock
        self.writer = StepWriter(notifier, confirmations=confirmations, confirmation_timeout=confirmation_timeout)
        self.funder = DistributorFunder(contracts, notifier, self.writer, distributor_role=distributor_role)
        # Highest status seen per season across invocations of this instance.
        self._observed: dict[int, SeasonStatus] = {}

    @classmethod
    def from_config(cls, cfg: dict[str, Any], notifier: Notifier) -> "SeasonLifecycleOrchestrator":
        trading = cfg.get("trading") or {}
        lifecycle = cfg.get("lifecycle") or {}
        return cls(
            ContractAddresses.from_config(cfg),
            notifier,
            confirmations=int(trading.get("confirmations", 1)),
            confirmation_timeout=float(trading.get("confirmation_timeout_seconds", 60)),
            distributor_role=str(lifecycle.get("distributor_role", "RAFFLE_ROLE")),
            fulfill_mock_vrf=bool(lifecycle.get("fulfill_mock_vrf", False)),
            finalize_poll_attempts=int(lifecycle.get("finalize_poll_attempts", 5)),
            finalize_poll_interval=float(lifecycle.get("finalize_poll_interval_seconds", 2.0)),
        )

    async def checkpoint(self, session: LedgerSession, season_id: int) -> LifecycleCheckpoint:
        cp = await read_checkpoint(session, self.contracts, season_id, distributor_role=self.distributor_role)
        self._observe(season_id, cp.status)
        return cp

    def _observe(self, season_id: int, status: SeasonStatus) -> None:
        previous = self._observed.get(season_id)
        if previous is not None and status < previous:
            raise StatusRegressionError(season_id, previous, status)
        self._observed[season_id] = status

    def _status(self, season_id: int, message: str, step: str = "lifecycle") -> None:
        self.notifier.status(message, season_id=season_id, step=step)

    async def advance(self, session: LedgerSession, season_id: int, *, early: bool = False) -> LifecycleResult:
        """
        Move a season as far toward Completed as the ledger currently allows.

        Returns PENDING (retryable) when waiting on time or randomness, FATAL on a
        missing prerequisite, UNKNOWN when a confirmation wait timed out.
        `StatusRegressionError` propagates.
        """
        tx_ids: list[str] = []
        vrf_attempted = False
        finalize_attempted = False
        first_status: SeasonStatus | None = None

        def result(
            outcome: LifecycleOutcome, message: str, status: SeasonStatus | None, *, retryable: bool = False
        ) -> LifecycleResult:
            return LifecycleResult(
                success=outcome not in _FAILED_OUTCOMES,
                season_id=season_id,
                outcome=outcome,
                message=message,
                status=status,
                transaction_ids=tuple(tx_ids),
                retryable=retryable,
            )

        status: SeasonStatus | None = None
        try:
            while True:
                cp = await self.checkpoint(session, season_id)
                status = cp.status
                if first_status is None:
                    first_status = status
                self._status(season_id, f"Season status: {status.label}")

                if status == SeasonStatus.COMPLETED:
                    if not tx_ids and first_status == SeasonStatus.COMPLETED:
                        return result(LifecycleOutcome.ALREADY_COMPLETED, "Season already completed", status)
                    self.notifier.success(f"Season {season_id} completed", tx_ids[-1] if tx_ids else None, season_id=season_id)
                    self.notifier.invalidate(*season_keys(session.network, season_id))
                    return result(LifecycleOutcome.COMPLETED, "Season completed", status)

                # Every remaining branch writes; a missing distributor or role is fatal first.
                require_prerequisites(cp)

                if status in (SeasonStatus.NOT_STARTED, SeasonStatus.ACTIVE):
                    if not early and self.clock() < cp.end_time:
                        return result(
                            LifecycleOutcome.PENDING,
                            f"Season ends at {cp.end_time}; use an early end to stop it now",
                            status,
                            retryable=True,
                        )
                    function = "requestSeasonEndEarly" if early else "requestSeasonEnd"
                    self._status(season_id, "Requesting season end...", function)
                    tx_ids.append(
                        await self.writer.write(
                            session, self.contracts.raffle, RAFFLE_ABI, function, (season_id,), season_id=season_id
                        )
                    )
                    continue

                if status in (SeasonStatus.END_REQUESTED, SeasonStatus.VRF_PENDING):
                    if cp.vrf_request_id and self._can_fulfill() and not vrf_attempted:
                        vrf_attempted = True
                        self._status(season_id, f"Fulfilling VRF request {cp.vrf_request_id}...", "fulfillRandomWords")
                        tx_ids.append(
                            await self.writer.write(
                                session,
                                self.contracts.vrf_coordinator,
                                VRF_COORDINATOR_ABI,
                                "fulfillRandomWords",
                                (cp.vrf_request_id, self.contracts.raffle),
                                season_id=season_id,
                            )
                        )
                        cp = await self.checkpoint(session, season_id)
                        status = cp.status
                        if is_randomness_fulfilled(cp):
                            continue
                    waiting_on = f"request {cp.vrf_request_id}" if cp.vrf_request_id else "a request id"
                    return result(
                        LifecycleOutcome.PENDING,
                        f"Waiting for randomness ({waiting_on})",
                        status,
                        retryable=True,
                    )

                if status == SeasonStatus.DISTRIBUTING:
                    if finalize_attempted:
                        return result(
                            LifecycleOutcome.PENDING, "Finalization submitted; season still distributing", status, retryable=True
                        )
                    finalize_attempted = True
                    self._status(season_id, "Finalizing season...", "finalizeSeason")
                    tx_ids.append(
                        await self.writer.write(
                            session, self.contracts.raffle, RAFFLE_ABI, "finalizeSeason", (season_id,), season_id=season_id
                        )
                    )
                    status = await self._await_completion(session, season_id)
                    continue
        except PrerequisiteError as e:
            logger.error(f"Season {season_id}: {e.code}: {e.message}")
            self.notifier.error(e.message, season_id=season_id, step="prerequisites")
            return result(LifecycleOutcome.FATAL, e.message, status, retryable=False)
        except ConfirmationTimeout as e:
            if e.transaction_id and e.transaction_id not in tx_ids:
                tx_ids.append(e.transaction_id)
            message = classify(e)
            self.notifier.error(message, e.transaction_id, season_id=season_id)
            return result(LifecycleOutcome.UNKNOWN, f"{message}; re-check the season later", status, retryable=True)
        except TransactionReverted as e:
            if e.transaction_id:
                tx_ids.append(e.transaction_id)
            message = classify(e)
            self.notifier.error(message, e.transaction_id, season_id=season_id)
            return result(LifecycleOutcome.FAILED, message, status, retryable=False)
        except (SimulationRevert, SubmissionError) as e:
            message = classify(e, RAFFLE_ABI)
            self.notifier.error(message, season_id=season_id)
            return result(LifecycleOutcome.FAILED, message, status, retryable=isinstance(e, SimulationRevert))
        except LedgerError as e:
            message = classify(e, RAFFLE_ABI)
            logger.warning(f"Season {season_id}: ledger read failed: {message}")
            self.notifier.error(message, season_id=season_id)
            return result(LifecycleOutcome.FAILED, message, status, retryable=True)

    def _can_fulfill(self) -> bool:
        return self.fulfill_mock_vrf and bool(self.contracts.vrf_coordinator)

    async def _await_completion(self, session: LedgerSession, season_id: int) -> SeasonStatus:
        """Re-read after finalize until Completed or attempts run out."""
        status = (await self.checkpoint(session, season_id)).status
        for _ in range(self.finalize_poll_attempts - 1):
            if status >= SeasonStatus.COMPLETED:
                break
            await asyncio.sleep(self.finalize_poll_interval)
            status = (await self.checkpoint(session, season_id)).status
        return status

    async def fund_distributor(self, session: LedgerSession, season_id: int) -> LifecycleResult:
        return await self.funder.fund(session, season_id)

    async def resolve(self, session: LedgerSession, season_id: int, *, early: bool = False) -> LifecycleResult:
        """End-to-end: advance the season, then fund the distributor once it is Completed."""
        advanced = await self.advance(session, season_id, early=early)
        if advanced.status != SeasonStatus.COMPLETED:
            return advanced

        funded = await self.fund_distributor(session, season_id)
        if advanced.transaction_ids:
            return LifecycleResult(
                success=funded.success,
                season_id=season_id,
                outcome=funded.outcome,
                message=funded.message,
                status=funded.status,
                transaction_ids=advanced.transaction_ids + funded.transaction_ids,
                retryable=funded.retryable,
            )
        return funded
