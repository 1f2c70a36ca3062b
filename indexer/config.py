"""Configuration management for the crowdfunding chain indexer."""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()


@dataclass(frozen=True)
class ChainDescriptor:
    """Static per-chain configuration."""

    name: str
    rpc_url: str
    contract_address: str
    is_main: bool = False


def _chain_env_prefix(name: str) -> str:
    return name.upper().replace("-", "_")


def load_chains_from_env() -> Mapping[str, ChainDescriptor]:
    """Build chain descriptors from CHAINS / MAIN_CHAIN / <NAME>_RPC / <NAME>_CONTRACT_ADDRESS.

    Raises:
        ValueError: If any listed chain is missing its RPC URL or contract address
    """
    names = [n.strip().lower() for n in os.getenv("CHAINS", "polygon").split(",") if n.strip()]
    if not names:
        raise ValueError("CHAINS environment variable lists no chains")

    main_chain = os.getenv("MAIN_CHAIN", names[0]).strip().lower()
    if main_chain not in names:
        raise ValueError(f"MAIN_CHAIN '{main_chain}' is not listed in CHAINS")

    issues = []
    chains: dict[str, ChainDescriptor] = {}
    for name in names:
        prefix = _chain_env_prefix(name)
        rpc_url = os.getenv(f"{prefix}_RPC")
        contract_address = os.getenv(f"{prefix}_CONTRACT_ADDRESS")
        if not rpc_url:
            issues.append(f"Missing RPC URL for {name} ({prefix}_RPC)")
        if not contract_address:
            issues.append(f"Missing contract address for {name} ({prefix}_CONTRACT_ADDRESS)")
        if rpc_url and contract_address:
            chains[name] = ChainDescriptor(
                name=name,
                rpc_url=rpc_url,
                contract_address=contract_address,
                is_main=(name == main_chain),
            )

    if issues:
        raise ValueError(f"Environment validation failed: {', '.join(issues)}")

    return MappingProxyType(chains)


@dataclass
class Config:
    """Indexer configuration."""

    # Required
    db_url: str
    chains: Mapping[str, ChainDescriptor]

    log_level: str = "INFO"

    # Scheduler settings
    poll_interval_seconds: int = 15
    realtime_threshold: int = 200
    realtime_batch_size: int = 100
    catchup_batch_size: int = 5000
    max_acceptable_gap: int = 500_000
    recent_history_blocks: int = 100_000
    max_block_range: int = 10_000
    campaign_read_batch_size: int = 20

    # RPC retry settings
    rpc_max_retries: int = 3
    rpc_retry_delay_seconds: float = 2.0

    # Reconciliation settings
    reconciliation_threshold: Decimal = Decimal("0.01")
    reconciliation_batch_size: int = 50
    reconciliation_batch_delay_seconds: float = 1.0
    reconciliation_concurrency: int = 10
    reconciliation_interval_seconds: int = 300

    # Donation relay settings (native amounts in whole coin units)
    wallet_master_seed: Optional[str] = field(default=None, repr=False)
    min_donation_amount: Decimal = Decimal("1.0")
    relay_balance_floor: Decimal = Decimal("0.1")
    gas_probe_amount: Decimal = Decimal("0.1")
    gas_reserve_min: Decimal = Decimal("0.05")
    gas_price_boost_percent: int = 120
    replacement_boost_percent: int = 150
    gas_limit_margin_percent: int = 130
    gas_cost_buffer_percent: int = 150
    max_pending_checks: int = 15
    relay_interval_seconds: int = 60

    stable_token_decimals: int = 8

    def __post_init__(self) -> None:
        if not isinstance(self.chains, MappingProxyType):
            self.chains = MappingProxyType(dict(self.chains))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        return cls(
            db_url=db_url,
            chains=load_chains_from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            # Scheduler settings
            poll_interval_seconds=int(os.getenv("POLL_INTERVAL_SECONDS", "15")),
            realtime_threshold=int(os.getenv("REALTIME_THRESHOLD", "200")),
            realtime_batch_size=int(os.getenv("REALTIME_BATCH_SIZE", "100")),
            catchup_batch_size=int(os.getenv("CATCHUP_BATCH_SIZE", "5000")),
            max_acceptable_gap=int(os.getenv("MAX_ACCEPTABLE_GAP", "500000")),
            recent_history_blocks=int(os.getenv("RECENT_HISTORY_BLOCKS", "100000")),
            max_block_range=int(os.getenv("MAX_BLOCK_RANGE", "10000")),
            campaign_read_batch_size=int(os.getenv("CAMPAIGN_READ_BATCH_SIZE", "20")),
            # RPC retry settings
            rpc_max_retries=int(os.getenv("RPC_MAX_RETRIES", "3")),
            rpc_retry_delay_seconds=float(os.getenv("RPC_RETRY_DELAY_SECONDS", "2")),
            # Reconciliation settings
            reconciliation_threshold=Decimal(os.getenv("RECONCILIATION_THRESHOLD", "0.01")),
            reconciliation_batch_size=int(os.getenv("RECONCILIATION_BATCH_SIZE", "50")),
            reconciliation_batch_delay_seconds=float(os.getenv("RECONCILIATION_BATCH_DELAY_SECONDS", "1")),
            reconciliation_concurrency=int(os.getenv("RECONCILIATION_CONCURRENCY", "10")),
            reconciliation_interval_seconds=int(os.getenv("RECONCILIATION_INTERVAL_SECONDS", "300")),
            # Donation relay settings
            wallet_master_seed=os.getenv("WALLET_MASTER_SEED") or None,
            min_donation_amount=Decimal(os.getenv("MIN_DONATION_AMOUNT", "1.0")),
            relay_balance_floor=Decimal(os.getenv("RELAY_BALANCE_FLOOR", "0.1")),
            gas_probe_amount=Decimal(os.getenv("GAS_PROBE_AMOUNT", "0.1")),
            gas_reserve_min=Decimal(os.getenv("GAS_RESERVE_MIN", "0.05")),
            gas_price_boost_percent=int(os.getenv("GAS_PRICE_BOOST_PERCENT", "120")),
            replacement_boost_percent=int(os.getenv("REPLACEMENT_BOOST_PERCENT", "150")),
            gas_limit_margin_percent=int(os.getenv("GAS_LIMIT_MARGIN_PERCENT", "130")),
            gas_cost_buffer_percent=int(os.getenv("GAS_COST_BUFFER_PERCENT", "150")),
            max_pending_checks=int(os.getenv("MAX_PENDING_CHECKS", "15")),
            relay_interval_seconds=int(os.getenv("RELAY_INTERVAL_SECONDS", "60")),
            stable_token_decimals=int(os.getenv("STABLE_TOKEN_DECIMALS", "8")),
        )

    @property
    def main_chain(self) -> ChainDescriptor:
        """The single chain that carries campaign, donation and withdrawal events."""
        for descriptor in self.chains.values():
            if descriptor.is_main:
                return descriptor
        raise ValueError("No main chain configured")

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.db_url:
            raise ValueError("db_url is required")
        if not self.chains:
            raise ValueError("at least one chain must be configured")
        for name, descriptor in self.chains.items():
            if not descriptor.rpc_url:
                raise ValueError(f"rpc_url is required for chain {name}")
            if not descriptor.contract_address:
                raise ValueError(f"contract_address is required for chain {name}")
        main_count = sum(1 for d in self.chains.values() if d.is_main)
        if main_count != 1:
            raise ValueError(f"exactly one main chain is required, got {main_count}")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.realtime_batch_size <= 0 or self.catchup_batch_size <= 0:
            raise ValueError("batch sizes must be > 0")
        if self.max_block_range <= 0:
            raise ValueError("max_block_range must be > 0")
        if self.campaign_read_batch_size <= 0:
            raise ValueError("campaign_read_batch_size must be > 0")
        if self.rpc_max_retries <= 0:
            raise ValueError("rpc_max_retries must be > 0")
        if self.rpc_retry_delay_seconds < 0:
            raise ValueError("rpc_retry_delay_seconds must be >= 0")
        if self.reconciliation_batch_size <= 0:
            raise ValueError("reconciliation_batch_size must be > 0")
        if self.reconciliation_concurrency <= 0:
            raise ValueError("reconciliation_concurrency must be > 0")
        if self.max_pending_checks <= 0:
            raise ValueError("max_pending_checks must be > 0")
        if self.relay_interval_seconds <= 0:
            raise ValueError("relay_interval_seconds must be > 0")

    def require_master_seed(self) -> str:
        """Return the wallet master seed or fail."""
        if not self.wallet_master_seed:
            raise ValueError("WALLET_MASTER_SEED environment variable is required")
        return self.wallet_master_seed
