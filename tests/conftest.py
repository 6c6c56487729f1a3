import os
import tempfile
from pathlib import Path
from typing import Any

import pytest

# Unit tests should not require PostgreSQL (or psycopg2) unless explicitly requested.
os.environ.pop("SOF_DATABASE_URL", None)
os.environ.pop("DATABASE_URL", None)

# Keep the test journal out of the project database.
os.environ.setdefault("SOF_SQLITE_PATH", str(Path(tempfile.gettempdir()) / f"sof_orchestrator_pytest_{os.getpid()}.db"))

# Unit tests should not require a running node.
os.environ.setdefault("SOF_DISABLE_LEDGER", "1")

from sof_orchestrator.domain.models import ZERO_ADDRESS, ContractAddresses, LedgerSession, SeasonStatus
from sof_orchestrator.errors.types import ConfirmationTimeout, LedgerError, ReadError, SimulationRevert
from sof_orchestrator.events.notifier import Notifier
from sof_orchestrator.ports.ledger import Receipt, SimulationResult, TxConfig

PRICE = 10**16  # 0.01 SOF per ticket


class FakeChain:
    """
    In-memory stand-in for the contracts behind a LedgerClient.

    Reads are served from lambdas over mutable fields; mined transactions apply
    an effect per function name, so status changes only after confirmation.
    """

    SOF = "0x" + "11" * 20
    RAFFLE = "0x" + "22" * 20
    DISTRIBUTOR = "0x" + "33" * 20
    VRF = "0x" + "44" * 20
    CURVE = "0x" + "55" * 20
    ACCOUNT = "0x" + "66" * 20
    GATING = "0x" + "77" * 20
    WINNER = "0x" + "88" * 20
    RAFFLE_TOKEN = "0x" + "99" * 20

    def __init__(self) -> None:
        # Season 1
        self.status = SeasonStatus.ACTIVE
        self.start_time = 1_000
        self.end_time = 2_000
        self.prize_pool = 5 * 10**18
        self.vrf_request_id = 0
        self.winner = ZERO_ADDRESS
        self.distributor = self.DISTRIBUTOR
        self.role_granted = True
        self.funded = False
        self.gate_count = 0
        self.verified = False

        # Curve
        self.total_supply = 200
        self.reserves = 10 * 10**18
        self.buy_fee_bps = 10
        self.sell_fee_bps = 70
        self.trading_locked = False
        self.bond_steps = [(1_000, PRICE), (5_000, 2 * PRICE)]
        self.player_tickets = 50

        # Token
        self.balances: dict[str, int] = {self.ACCOUNT.lower(): 100 * 10**18}
        self.allowance = 0

        self.reads: list[tuple[str, str, tuple]] = []
        self.read_errors: dict[tuple[str, str], Exception] = {}
        self.simulations: list[TxConfig] = []
        self.simulation_reverts: dict[str, LedgerError] = {}
        self.replay_reverts: dict[str, LedgerError] = {}
        self.simulate_errors: dict[str, LedgerError] = {}
        self.submitted: list[TxConfig] = []
        self.submit_errors: dict[str, LedgerError] = {}
        self.receipt_status: dict[str, str] = {}
        self.wait_errors: dict[str, Exception] = {}
        self.effects: dict[str, Any] = {
            "approve": self._approve,
            "buyTokens": self._buy,
            "sellTokens": self._sell,
            "requestSeasonEnd": self._request_end,
            "requestSeasonEndEarly": self._request_end,
            "fulfillRandomWords": self._fulfill,
            "finalizeSeason": self._finalize,
            "extractSof": self._extract,
            "fundSeason": self._fund,
        }
        self._pending: dict[str, TxConfig] = {}

    # -- views -------------------------------------------------------------

    def _views(self) -> dict[tuple[str, str], Any]:
        return {
            (self.RAFFLE, "getSeasonDetails"): lambda sid: (
                (
                    f"Season {sid}",
                    self.start_time,
                    self.end_time,
                    3,
                    6500,
                    self.RAFFLE_TOKEN,
                    self.CURVE,
                    self.status == SeasonStatus.ACTIVE,
                    self.status == SeasonStatus.COMPLETED,
                    self.gate_count > 0,
                ),
                int(self.status),
                12,
                self.total_supply,
                self.prize_pool,
            ),
            (self.RAFFLE, "getVrfRequestForSeason"): lambda sid: self.vrf_request_id,
            (self.RAFFLE, "prizeDistributor"): lambda: self.distributor,
            (self.RAFFLE, "getWinners"): lambda sid: [] if self.winner == ZERO_ADDRESS else [self.winner],
            (self.DISTRIBUTOR, "hasRole"): lambda role, account: self.role_granted,
            (self.DISTRIBUTOR, "getSeason"): lambda sid: (
                self.SOF,
                self.winner,
                self.prize_pool * 65 // 100 if self.funded else 0,
                0,
                self.total_supply,
                10,
                b"\x00" * 32,
                self.funded,
                False,
            ),
            (self.CURVE, "curveConfig"): lambda: (
                self.total_supply,
                self.reserves,
                0,
                self.buy_fee_bps,
                self.sell_fee_bps,
                self.trading_locked,
                True,
            ),
            (self.CURVE, "calculateBuyPrice"): lambda q: q * PRICE,
            (self.CURVE, "calculateSellPrice"): lambda q: q * PRICE,
            (self.CURVE, "getBondSteps"): lambda: list(self.bond_steps),
            (self.CURVE, "playerTickets"): lambda account: self.player_tickets,
            (self.SOF, "balanceOf"): lambda account: self.balances.get(account.lower(), 0),
            (self.SOF, "allowance"): lambda owner, spender: self.allowance,
            (self.GATING, "getGateCount"): lambda sid: self.gate_count,
            (self.GATING, "isUserVerified"): lambda sid, user: self.verified,
        }

    # -- effects -------------------------------------------------------------

    def _approve(self, tx: TxConfig) -> None:
        self.allowance = int(tx.args[1])

    def _buy(self, tx: TxConfig) -> None:
        self.total_supply += int(tx.args[0])

    def _sell(self, tx: TxConfig) -> None:
        self.total_supply -= int(tx.args[0])

    def _request_end(self, tx: TxConfig) -> None:
        self.status = SeasonStatus.VRF_PENDING
        self.vrf_request_id = 7

    def _fulfill(self, tx: TxConfig) -> None:
        self.status = SeasonStatus.DISTRIBUTING
        self.winner = self.WINNER

    def _finalize(self, tx: TxConfig) -> None:
        self.status = SeasonStatus.COMPLETED

    def _extract(self, tx: TxConfig) -> None:
        to, amount = tx.args
        self.reserves -= int(amount)
        self.balances[str(to).lower()] = self.balances.get(str(to).lower(), 0) + int(amount)

    def _fund(self, tx: TxConfig) -> None:
        self.funded = True

    # -- helpers for assertions ------------------------------------------

    def submitted_functions(self) -> list[str]:
        return [tx.function for tx in self.submitted]

    def read_functions(self) -> list[str]:
        return [fn for _, fn, _ in self.reads]


class FakeLedgerClient:
    def __init__(self, chain: FakeChain) -> None:
        self.chain = chain

    async def read_contract_state(self, address, function, args=(), *, abi, block=None):
        chain = self.chain
        key = (str(address).lower(), function)
        chain.reads.append((key[0], function, tuple(args)))
        if key in chain.read_errors:
            raise chain.read_errors[key]
        views = {(a.lower(), f): v for (a, f), v in chain._views().items()}
        if key not in views:
            raise ReadError(f"{function}@{address}: no such view")
        return views[key](*args)

    async def simulate(self, tx: TxConfig) -> SimulationResult:
        chain = self.chain
        chain.simulations.append(tx)
        if tx.function in chain.simulate_errors:
            raise chain.simulate_errors[tx.function]
        reverts = chain.replay_reverts if tx.block is not None else chain.simulation_reverts
        if tx.function in reverts:
            return SimulationResult(ok=False, error=reverts[tx.function])
        return SimulationResult(ok=True)

    async def submit(self, tx: TxConfig) -> str:
        chain = self.chain
        if tx.function in chain.submit_errors:
            raise chain.submit_errors[tx.function]
        chain.submitted.append(tx)
        tx_id = f"0x{len(chain.submitted):064x}"
        chain._pending[tx_id] = tx
        return tx_id

    async def wait_for_confirmation(self, tx_id, confirmations=1, *, timeout):
        chain = self.chain
        tx = chain._pending.pop(tx_id)
        if tx.function in chain.wait_errors:
            raise chain.wait_errors[tx.function]
        status = chain.receipt_status.get(tx.function, "success")
        if status == "success":
            effect = chain.effects.get(tx.function)
            if effect is not None:
                effect(tx)
        return Receipt(transaction_id=tx_id, status=status, block_number=100 + len(chain.submitted))

    async def get_logs(self, address, event_signature, from_block=0, to_block="latest"):
        return []


def timeout_error() -> ConfirmationTimeout:
    return ConfirmationTimeout("Timed out after 60s waiting for receipt")


def revert_error(message: str, data: str | None = None) -> SimulationRevert:
    return SimulationRevert(message, data=data)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def session(chain: FakeChain) -> LedgerSession:
    return LedgerSession(account=chain.ACCOUNT, chain_id=31337, client=FakeLedgerClient(chain), network="LOCAL")


@pytest.fixture
def contracts(chain: FakeChain) -> ContractAddresses:
    return ContractAddresses(
        sof_token=chain.SOF,
        raffle=chain.RAFFLE,
        prize_distributor=chain.DISTRIBUTOR,
        vrf_coordinator=chain.VRF,
        season_gating=None,
    )


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()
