from __future__ import annotations

import logging
from typing import Any

from eth_utils import keccak

from sof_orchestrator.domain.models import (
    ContractAddresses,
    DistributorSeasonRecord,
    LedgerSession,
    LifecycleCheckpoint,
    Season,
    SeasonStatus,
    is_zero_address,
)
from sof_orchestrator.errors.types import PrerequisiteError, ReadError
from sof_orchestrator.ledger.abis import PRIZE_DISTRIBUTOR_ABI, RAFFLE_ABI

logger = logging.getLogger(__name__)


def role_id(role: str) -> bytes:
    """`RAFFLE_ROLE` -> keccak256("RAFFLE_ROLE"); a 0x-prefixed 32-byte hex is used as-is."""
    if role.startswith("0x") and len(role) == 66:
        return bytes.fromhex(role[2:])
    return keccak(text=role)


def parse_season_details(season_id: int, raw: Any) -> Season:
    """
    Parse `getSeasonDetails(seasonId)`.

    Layout: (config, status, totalParticipants, totalTickets, totalPrizePool) where config is
    (name, startTime, endTime, winnerCount, grandPrizeBps, raffleToken, bondingCurve,
    isActive, isCompleted, gated).
    """
    try:
        config, status, _participants, total_tickets, prize_pool = raw
        name, start_time, end_time = config[0], config[1], config[2]
        raffle_token, bonding_curve = config[5], config[6]
        gated = bool(config[9]) if len(config) > 9 else False
        return Season(
            season_id=int(season_id),
            name=str(name),
            start_time=int(start_time),
            end_time=int(end_time),
            status=SeasonStatus(int(status)),
            total_tickets=int(total_tickets),
            total_prize_pool=int(prize_pool),
            bonding_curve=str(bonding_curve),
            raffle_token=str(raffle_token),
            is_gated=gated,
        )
    except (TypeError, ValueError, IndexError) as e:
        raise ReadError(f"Unexpected getSeasonDetails payload for season {season_id}: {e}") from e


async def read_season(session: LedgerSession, contracts: ContractAddresses, season_id: int) -> Season:
    raw = await session.client.read_contract_state(
        contracts.raffle, "getSeasonDetails", (int(season_id),), abi=RAFFLE_ABI
    )
    return parse_season_details(season_id, raw)


async def read_distributor_address(session: LedgerSession, contracts: ContractAddresses) -> str:
    address = str(await session.client.read_contract_state(contracts.raffle, "prizeDistributor", abi=RAFFLE_ABI))
    expected = contracts.prize_distributor
    if expected and not is_zero_address(address) and address.lower() != expected.lower():
        logger.warning(f"Raffle points at distributor {address}, configuration says {expected}")
    return address


async def read_distributor_record(session: LedgerSession, distributor: str, season_id: int) -> DistributorSeasonRecord:
    raw = await session.client.read_contract_state(
        distributor, "getSeason", (int(season_id),), abi=PRIZE_DISTRIBUTOR_ABI
    )
    return DistributorSeasonRecord.from_tuple(raw)


async def read_checkpoint(
    session: LedgerSession,
    contracts: ContractAddresses,
    season_id: int,
    *,
    distributor_role: str = "RAFFLE_ROLE",
) -> LifecycleCheckpoint:
    """Fresh snapshot of a season and its distributor prerequisites."""
    client = session.client
    season = await read_season(session, contracts, season_id)

    vrf_request_id: int | None = None
    if season.status >= SeasonStatus.END_REQUESTED:
        try:
            raw = await client.read_contract_state(
                contracts.raffle, "getVrfRequestForSeason", (int(season_id),), abi=RAFFLE_ABI
            )
            vrf_request_id = int(raw) or None
        except ReadError as e:
            logger.warning(f"Season {season_id}: VRF request id unavailable: {e}")

    distributor = await read_distributor_address(session, contracts)
    configured = not is_zero_address(distributor)
    role_granted = False
    if configured:
        role_granted = bool(
            await client.read_contract_state(
                distributor,
                "hasRole",
                (role_id(distributor_role), contracts.raffle),
                abi=PRIZE_DISTRIBUTOR_ABI,
            )
        )

    return LifecycleCheckpoint(
        season_id=int(season_id),
        status=season.status,
        end_time=season.end_time,
        total_prize_pool=season.total_prize_pool,
        bonding_curve=season.bonding_curve,
        vrf_request_id=vrf_request_id,
        distributor_address=distributor if configured else None,
        distributor_configured=configured,
        role_granted=role_granted,
    )


def is_randomness_fulfilled(checkpoint: LifecycleCheckpoint) -> bool:
    """The raffle leaves VRFPending on its own once the coordinator calls back."""
    return checkpoint.status >= SeasonStatus.DISTRIBUTING


def require_prerequisites(checkpoint: LifecycleCheckpoint) -> None:
    if not checkpoint.distributor_configured:
        raise PrerequisiteError(
            PrerequisiteError.DISTRIBUTOR_NOT_CONFIGURED,
            "Prize distributor is not configured on the raffle",
        )
    if not checkpoint.role_granted:
        raise PrerequisiteError(
            PrerequisiteError.ROLE_NOT_GRANTED,
            "Prize distributor has not granted the raffle its required role",
        )
