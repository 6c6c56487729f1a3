import asyncio
import logging
import os

from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3

from sof_orchestrator.domain.models import ZERO_ADDRESS, LedgerSession
from sof_orchestrator.ledger.client import Web3LedgerClient

logger = logging.getLogger(__name__)

# Connection timeout in seconds
RPC_CONNECT_TIMEOUT = 10
RPC_REQUEST_TIMEOUT = 30


class LedgerConnection:
    def __init__(self, config: dict | None = None, config_path: str | None = None):
        if config is None:
            from sof_orchestrator.utils.config_loader import load_config

            config = load_config(config_path=config_path)
        self.config = config

        network = self.config.get("network", {}) or {}
        self.network = str(network.get("name", "LOCAL"))
        self.rpc_url = str(network.get("rpc_url", "http://127.0.0.1:8545"))
        self.chain_id = int(network.get("chain_id", 31337))

        self.w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url, request_kwargs={"timeout": RPC_REQUEST_TIMEOUT}))

        key = (os.environ.get("SOF_PRIVATE_KEY") or "").strip()
        self.account = Account.from_key(key) if key else None
        if self.account is None:
            logger.warning("SOF_PRIVATE_KEY not set; ledger session is read-only")
        self.client = Web3LedgerClient(self.w3, self.account)

    @property
    def address(self) -> str:
        if self.account is not None:
            return self.account.address
        return os.environ.get("SOF_ACCOUNT_ADDRESS") or ZERO_ADDRESS

    async def connect(self, timeout: float = RPC_CONNECT_TIMEOUT) -> bool:
        """
        Checks the RPC endpoint is reachable and serves the configured chain.

        Returns:
            True if connected to the expected chain, False otherwise
        """
        try:
            logger.info(f"Connecting to {self.network} RPC at {self.rpc_url} (chain {self.chain_id}, timeout: {timeout}s)")
            if not await asyncio.wait_for(self.w3.is_connected(), timeout=timeout):
                logger.error(f"RPC at {self.rpc_url} is not reachable")
                return False
            chain_id = int(await asyncio.wait_for(self.w3.eth.chain_id, timeout=timeout))
        except asyncio.TimeoutError:
            logger.error(f"RPC connection timed out after {timeout}s")
            return False
        except Exception as e:
            logger.error(f"Failed to connect to RPC: {type(e).__name__}: {e}")
            return False

        if chain_id != self.chain_id:
            logger.error(f"Connected to wrong chain. Expected {self.chain_id}, got {chain_id}")
            return False
        logger.info(f"Connected to chain {chain_id} as {self.address}")
        return True

    async def ensure_connected(self, max_retries: int = 3) -> bool:
        """
        Ensures the endpoint answers, retrying with exponential backoff.

        Returns:
            True if connected, False if all attempts failed
        """
        for attempt in range(1, max_retries + 1):
            if await self.connect():
                return True
            logger.info(f"Reconnection attempt {attempt}/{max_retries} failed")
            if attempt < max_retries:
                await asyncio.sleep(2**attempt)

        logger.error(f"Failed to reach {self.rpc_url} after {max_retries} attempts")
        return False

    async def disconnect(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
            logger.info("Closed RPC provider session.")

    def session(self) -> LedgerSession:
        return LedgerSession(account=self.address, chain_id=self.chain_id, client=self.client, network=self.network)
