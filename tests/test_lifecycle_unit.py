import asyncio

import pytest
from conftest import revert_error, timeout_error

from sof_orchestrator.domain.models import ZERO_ADDRESS, LifecycleOutcome, SeasonStatus
from sof_orchestrator.errors.types import PrerequisiteError, ReadError, StatusRegressionError
from sof_orchestrator.lifecycle.checkpoint import (
    parse_season_details,
    read_checkpoint,
    require_prerequisites,
    role_id,
)
from sof_orchestrator.lifecycle.orchestrator import SeasonLifecycleOrchestrator


def _orchestrator(contracts, notifier, **kwargs) -> SeasonLifecycleOrchestrator:
    kwargs.setdefault("finalize_poll_interval", 0.0)
    kwargs.setdefault("clock", lambda: 1_500)
    return SeasonLifecycleOrchestrator(contracts, notifier, **kwargs)


def test_role_id_hashes_names_and_passes_raw_ids_through():
    assert len(role_id("RAFFLE_ROLE")) == 32
    raw = "0x" + "ab" * 32
    assert role_id(raw) == bytes.fromhex("ab" * 32)


def test_parse_season_details_rejects_garbage():
    with pytest.raises(ReadError):
        parse_season_details(1, ("not", "a", "season"))


def test_checkpoint_reads_distributor_from_raffle(chain, session, contracts):
    cp = asyncio.run(read_checkpoint(session, contracts, 1))
    assert cp.status == SeasonStatus.ACTIVE
    assert cp.distributor_address == chain.DISTRIBUTOR
    assert cp.prerequisites_met
    # No VRF lookup before the end was requested.
    assert "getVrfRequestForSeason" not in chain.read_functions()


def test_missing_distributor_is_fatal_and_writes_nothing(chain, session, contracts, notifier):
    chain.distributor = ZERO_ADDRESS
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1, early=True))

    assert result.outcome == LifecycleOutcome.FATAL
    assert not result.success
    assert not result.retryable
    assert result.message == "Prize distributor is not configured on the raffle"
    assert chain.submitted == []
    assert notifier.notifications[-1].type == "error"


def test_missing_role_is_fatal(chain, session, contracts, notifier):
    chain.role_granted = False
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1, early=True))
    assert result.outcome == LifecycleOutcome.FATAL
    assert "role" in result.message
    assert chain.submitted == []


def test_missing_distributor_blocks_finalization(chain, session, contracts, notifier):
    chain.status = SeasonStatus.DISTRIBUTING
    chain.distributor = ZERO_ADDRESS
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.FATAL
    assert result.message == "Prize distributor is not configured on the raffle"
    assert chain.submitted == []
    assert chain.simulations == []


def test_missing_role_blocks_randomness_fulfillment(chain, session, contracts, notifier):
    chain.status = SeasonStatus.VRF_PENDING
    chain.vrf_request_id = 7
    chain.role_granted = False
    result = asyncio.run(_orchestrator(contracts, notifier, fulfill_mock_vrf=True).advance(session, 1))
    assert result.outcome == LifecycleOutcome.FATAL
    assert chain.submitted == []
    assert chain.simulations == []


def test_prerequisite_error_carries_code(chain, session, contracts, notifier):
    chain.role_granted = False
    cp = asyncio.run(read_checkpoint(session, contracts, 1))
    with pytest.raises(PrerequisiteError) as exc:
        require_prerequisites(cp)
    assert exc.value.code == PrerequisiteError.ROLE_NOT_GRANTED


def test_early_end_runs_through_to_completed(chain, session, contracts, notifier):
    orchestrator = _orchestrator(contracts, notifier, fulfill_mock_vrf=True)
    result = asyncio.run(orchestrator.advance(session, 1, early=True))

    assert result.outcome == LifecycleOutcome.COMPLETED
    assert result.success
    assert result.status == SeasonStatus.COMPLETED
    assert chain.submitted_functions() == ["requestSeasonEndEarly", "fulfillRandomWords", "finalizeSeason"]
    assert result.writes == 3
    fulfill = chain.submitted[1]
    assert fulfill.address == chain.VRF
    assert fulfill.args == (7, chain.RAFFLE)
    assert ("raffle", "LOCAL", "season", 1) in notifier.invalidations
    assert result.to_dict()["status_label"] == "Completed"


def test_every_write_is_simulated_first(chain, session, contracts, notifier):
    asyncio.run(_orchestrator(contracts, notifier, fulfill_mock_vrf=True).advance(session, 1, early=True))
    assert [tx.function for tx in chain.simulations] == chain.submitted_functions()


def test_season_still_running_is_pending(chain, session, contracts, notifier):
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.PENDING
    assert result.retryable
    assert result.success
    assert chain.submitted == []


def test_ended_season_requests_regular_end(chain, session, contracts, notifier):
    orchestrator = _orchestrator(contracts, notifier, clock=lambda: 3_000)
    result = asyncio.run(orchestrator.advance(session, 1))
    assert chain.submitted_functions() == ["requestSeasonEnd"]
    assert result.outcome == LifecycleOutcome.PENDING
    assert result.message == "Waiting for randomness (request 7)"
    assert result.writes == 1


def test_completed_season_needs_no_writes(chain, session, contracts, notifier):
    chain.status = SeasonStatus.COMPLETED
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.ALREADY_COMPLETED
    assert result.writes == 0
    assert chain.submitted == []


def test_status_regression_is_raised(chain, session, contracts, notifier):
    orchestrator = _orchestrator(contracts, notifier)
    chain.status = SeasonStatus.DISTRIBUTING
    asyncio.run(orchestrator.checkpoint(session, 1))

    chain.status = SeasonStatus.ACTIVE
    with pytest.raises(StatusRegressionError) as exc:
        asyncio.run(orchestrator.advance(session, 1))
    assert exc.value.previous == SeasonStatus.DISTRIBUTING
    assert chain.submitted == []


def test_confirmation_timeout_is_unknown_and_retryable(chain, session, contracts, notifier):
    chain.wait_errors["requestSeasonEndEarly"] = timeout_error()
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1, early=True))

    assert result.outcome == LifecycleOutcome.UNKNOWN
    assert result.retryable
    assert not result.success
    assert result.writes == 1
    assert result.transaction_ids[0] == notifier.notifications[-1].transaction_id


def test_simulated_revert_stops_before_submission(chain, session, contracts, notifier):
    chain.simulation_reverts["requestSeasonEndEarly"] = revert_error("execution reverted", data=None)
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1, early=True))
    assert result.outcome == LifecycleOutcome.FAILED
    assert chain.submitted == []


def test_mined_revert_is_failed_and_not_retryable(chain, session, contracts, notifier):
    chain.status = SeasonStatus.DISTRIBUTING
    chain.receipt_status["finalizeSeason"] = "reverted"
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.FAILED
    assert not result.retryable
    assert result.message == "Transaction reverted"
    assert result.writes == 1


def test_randomness_without_mock_fulfillment_is_pending(chain, session, contracts, notifier):
    chain.status = SeasonStatus.VRF_PENDING
    chain.vrf_request_id = 42
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.PENDING
    assert result.message == "Waiting for randomness (request 42)"
    assert result.retryable
    assert chain.submitted == []


def test_mock_fulfillment_is_attempted_once(chain, session, contracts, notifier):
    chain.status = SeasonStatus.VRF_PENDING
    chain.vrf_request_id = 42
    # Coordinator accepts the call but the raffle never leaves VRFPending.
    chain.effects.pop("fulfillRandomWords")
    result = asyncio.run(_orchestrator(contracts, notifier, fulfill_mock_vrf=True).advance(session, 1))
    assert result.outcome == LifecycleOutcome.PENDING
    assert chain.submitted_functions() == ["fulfillRandomWords"]
    assert result.writes == 1


def test_unreachable_ledger_is_retryable_failure(chain, session, contracts, notifier):
    chain.read_errors[(chain.RAFFLE.lower(), "getSeasonDetails")] = ReadError("connection refused")
    result = asyncio.run(_orchestrator(contracts, notifier).advance(session, 1))
    assert result.outcome == LifecycleOutcome.FAILED
    assert result.retryable
    assert result.message == "connection refused"
