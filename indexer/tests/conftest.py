"""Shared fixtures: in-memory mirror database, fake chains and encoded logs."""

import os
from decimal import Decimal
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from config import ChainDescriptor, Config
from db.models import Base
from db.session import close_db, get_engine, init_db
from eth.abi_loader import get_main_chain_abi
from eth.client import EthereumClient
from eth.contract import CrowdfundingContract, OnChainCampaign
from eth.registry import ChainHandle, ChainRegistry
from eth.topics import event_signature

MAIN_CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
REMOTE_CONTRACT = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
CREATOR = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
DONOR = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
STABLE_TOKEN = "0x9fE46736679d2D9a65F0992F2272dE9f3c7fa6e0"


@pytest.fixture
def test_config():
    """Test configuration with one main and one secondary chain."""
    db_url = os.getenv("TEST_DB_URL", "sqlite:///:memory:")

    return Config(
        db_url=db_url,
        chains={
            "polygon": ChainDescriptor("polygon", "http://localhost:8545", MAIN_CONTRACT, is_main=True),
            "base": ChainDescriptor("base", "http://localhost:8546", REMOTE_CONTRACT),
        },
        rpc_retry_delay_seconds=0,
        reconciliation_batch_delay_seconds=0,
        wallet_master_seed="test-master-seed",
    )


@pytest.fixture
def db(test_config):
    """Fresh mirror schema for every test."""
    close_db()
    init_db(test_config)
    Base.metadata.create_all(get_engine())
    yield
    Base.metadata.drop_all(get_engine())
    close_db()


def _event_abi(event_name: str) -> Dict[str, Any]:
    for entry in get_main_chain_abi():
        if entry.get("type") == "event" and entry["name"] == event_name:
            return entry
    raise KeyError(event_name)


def tx_hash_for(block_number: int, log_index: int) -> str:
    return "0x" + f"{block_number:032x}{log_index:032x}"


def make_log(
    event_name: str,
    block_number: int,
    log_index: int = 0,
    address: str = MAIN_CONTRACT,
    tx_hash: Optional[str] = None,
    **args: Any,
) -> Dict[str, Any]:
    """ABI-encode a log exactly as eth_getLogs would return it."""
    event_abi = _event_abi(event_name)
    topics = [HexBytes(Web3.keccak(text=event_signature(event_abi)))]
    data_types, data_values = [], []
    for inp in event_abi["inputs"]:
        if inp["indexed"]:
            topics.append(HexBytes(encode([inp["type"]], [args[inp["name"]]])))
        else:
            data_types.append(inp["type"])
            data_values.append(args[inp["name"]])

    return {
        "address": address,
        "topics": topics,
        "data": HexBytes(encode(data_types, data_values)),
        "blockNumber": block_number,
        "blockHash": HexBytes(Web3.keccak(text=f"block-{block_number}")),
        "transactionHash": HexBytes(tx_hash or tx_hash_for(block_number, log_index)),
        "transactionIndex": 0,
        "logIndex": log_index,
        "removed": False,
    }


def stable(amount) -> int:
    """Whole units to the 8-decimal on-chain representation."""
    return int(Decimal(str(amount)).scaleb(8))


def on_chain_campaign(name: str = "Clean Water", total=0, ended: bool = False, target=1000, **overrides) -> OnChainCampaign:
    values = dict(
        name=name,
        target=stable(target),
        description=f"{name} description",
        social_link="https://example.org",
        image_id=7,
        creator=CREATOR,
        ended=ended,
        total_stable=stable(total),
    )
    values.update(overrides)
    return OnChainCampaign(**values)


class FakeChain:
    """One chain backed by in-memory logs and campaign structs."""

    def __init__(self, descriptor: ChainDescriptor, head: int = 0):
        self.head = head
        self.logs: List[Dict[str, Any]] = []
        self.campaigns: Dict[int, OnChainCampaign] = {}
        self.get_logs_calls: List[tuple[int, int]] = []

        client = Mock(spec=EthereumClient)
        client.get_latest_block.side_effect = lambda: self.head
        client.get_logs.side_effect = self._get_logs

        contract = Mock(spec=CrowdfundingContract)
        contract.address = descriptor.contract_address
        contract.read_campaign.side_effect = self._read_campaign

        self.handle = ChainHandle(descriptor=descriptor, client=client, contract=contract)

    @property
    def client(self) -> Mock:
        return self.handle.client

    @property
    def contract(self) -> Mock:
        return self.handle.contract

    def add_log(self, event_name: str, block_number: int, log_index: int = 0, **args: Any) -> Dict[str, Any]:
        log = make_log(event_name, block_number, log_index, address=self.handle.descriptor.contract_address, **args)
        self.logs.append(log)
        return log

    def _get_logs(self, address=None, from_block=0, to_block=0, topics=None):
        self.get_logs_calls.append((from_block, to_block))
        topic = HexBytes(topics[0]) if topics else None
        return [
            log
            for log in self.logs
            if from_block <= log["blockNumber"] <= to_block and (topic is None or log["topics"][0] == topic)
        ]

    def _read_campaign(self, campaign_id: int) -> OnChainCampaign:
        if campaign_id not in self.campaigns:
            raise KeyError(f"campaign {campaign_id} not found")
        return self.campaigns[campaign_id]


@pytest.fixture
def main_chain(test_config) -> FakeChain:
    return FakeChain(test_config.chains["polygon"], head=1000)


@pytest.fixture
def remote_chain(test_config) -> FakeChain:
    return FakeChain(test_config.chains["base"], head=500)


@pytest.fixture
def registry(test_config, main_chain, remote_chain) -> ChainRegistry:
    return ChainRegistry(
        dict(test_config.chains),
        {"polygon": main_chain.handle, "base": remote_chain.handle},
    )
