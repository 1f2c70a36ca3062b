"""Web3 client for EVM RPC interactions with bounded retry."""

import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TypeVar

from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.types import LogReceipt, TxReceipt

from config import ChainDescriptor, Config
from log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MAX_RETRY_COUNT = 3
RETRY_DELAY_SECONDS = 2.0


class RPCError(Exception):
    """A chain call that still failed after every retry attempt."""

    def __init__(self, name: str, attempts: int, last_error: BaseException):
        super().__init__(f"{name} failed after {attempts} attempts: {last_error}")
        self.name = name
        self.attempts = attempts
        self.last_error = last_error


def with_retry(
    fn: Callable[..., T],
    name: str,
    *args: Any,
    max_retries: int = MAX_RETRY_COUNT,
    retry_delay: float = RETRY_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``fn`` up to ``max_retries`` times with a fixed delay between attempts.

    Raises:
        RPCError: When every attempt failed (chained to the last failure)
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_retries + 1):
        try:
            logger.debug(f"Attempting {name} (try {attempt}/{max_retries})")
            result = fn(*args, **kwargs)
            if attempt > 1:
                logger.info(f"{name} succeeded after {attempt} attempts")
            return result
        except Exception as e:
            last_error = e
            logger.warning(f"{name} attempt {attempt} failed: {e}")
            if attempt < max_retries:
                sleep(retry_delay)

    logger.error(f"{name} failed after {max_retries} attempts")
    raise RPCError(name, max_retries, last_error) from last_error


@dataclass(frozen=True)
class FeeData:
    """Current network fee estimate, all values in wei."""

    gas_price: int
    max_fee_per_gas: Optional[int]
    max_priority_fee_per_gas: Optional[int]


class EthereumClient:
    """RPC client for one chain; every read goes through with_retry."""

    def __init__(
        self,
        descriptor: ChainDescriptor,
        max_retries: int = MAX_RETRY_COUNT,
        retry_delay: float = RETRY_DELAY_SECONDS,
        web3: Optional[Web3] = None,
    ):
        """Initialize Web3 client.

        Args:
            descriptor: Chain descriptor with RPC URL
            max_retries: Attempts per call
            retry_delay: Fixed delay between attempts, seconds
            web3: Pre-built Web3 instance (tests)
        """
        self.descriptor = descriptor
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.web3 = web3 or Web3(Web3.HTTPProvider(descriptor.rpc_url))

    @classmethod
    def from_config(cls, descriptor: ChainDescriptor, config: Config) -> "EthereumClient":
        return cls(
            descriptor,
            max_retries=config.rpc_max_retries,
            retry_delay=config.rpc_retry_delay_seconds,
        )

    @property
    def chain_name(self) -> str:
        return self.descriptor.name

    def retry(self, fn: Callable[..., T], name: str, *args: Any, **kwargs: Any) -> T:
        """Run any chain call under this client's retry policy."""
        return with_retry(
            fn,
            f"{self.chain_name}:{name}",
            *args,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            **kwargs,
        )

    def is_connected(self) -> bool:
        try:
            return bool(self.web3.is_connected())
        except Exception as e:
            logger.warning(f"Connection check failed for {self.chain_name}: {e}")
            return False

    def get_latest_block(self) -> int:
        """Get the current chain head block number."""
        return self.retry(lambda: self.web3.eth.block_number, "getBlockNumber")

    def get_chain_id(self) -> int:
        return self.retry(lambda: self.web3.eth.chain_id, "getChainId")

    def get_logs(
        self,
        address: Optional[str],
        from_block: int,
        to_block: int,
        topics: Optional[List[Optional[str]]] = None,
    ) -> List[LogReceipt]:
        """Get event logs for a contract address and block range.

        Args:
            address: Contract address (None for all addresses)
            from_block: Starting block number
            to_block: Ending block number (inclusive)
            topics: Event topic filters (list of topic hashes)

        Returns:
            List of log receipts

        Raises:
            RPCError: When retries are exhausted
        """
        filter_params: dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        if address:
            filter_params["address"] = Web3.to_checksum_address(address)
        if topics:
            filter_params["topics"] = topics

        return self.retry(self.web3.eth.get_logs, "getLogs", filter_params)

    def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        return self.retry(
            self.web3.eth.get_balance, "getBalance", Web3.to_checksum_address(address)
        )

    def get_fee_data(self) -> FeeData:
        """Fee estimate: EIP-1559 values when the chain reports a base fee, legacy otherwise."""

        def _fetch() -> FeeData:
            gas_price = self.web3.eth.gas_price
            block = self.web3.eth.get_block("latest")
            base_fee = block.get("baseFeePerGas")
            if base_fee is None:
                return FeeData(gas_price=gas_price, max_fee_per_gas=None, max_priority_fee_per_gas=None)
            priority_fee = self.web3.eth.max_priority_fee
            return FeeData(
                gas_price=gas_price,
                max_fee_per_gas=base_fee * 2 + priority_fee,
                max_priority_fee_per_gas=priority_fee,
            )

        return self.retry(_fetch, "getFeeData")

    def get_transaction_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        """Receipt for a mined transaction, None while it is still pending or unknown."""

        def _fetch() -> Optional[TxReceipt]:
            try:
                return self.web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        return self.retry(_fetch, "getTransactionReceipt")

    def get_transaction(self, tx_hash: str) -> Optional[dict[str, Any]]:
        def _fetch() -> Optional[dict[str, Any]]:
            try:
                return dict(self.web3.eth.get_transaction(tx_hash))
            except TransactionNotFound:
                return None

        return self.retry(_fetch, "getTransaction")

    def get_transaction_count(self, address: str) -> int:
        """Nonce of the next transaction from ``address``."""
        return self.retry(
            self.web3.eth.get_transaction_count, "getNonce", Web3.to_checksum_address(address)
        )

    def estimate_gas(self, transaction: dict[str, Any]) -> int:
        return self.retry(self.web3.eth.estimate_gas, "estimateGas", transaction)

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction (not retried) and return its hash."""
        tx_hash = self.web3.eth.send_raw_transaction(raw_transaction)
        return Web3.to_hex(tx_hash)
