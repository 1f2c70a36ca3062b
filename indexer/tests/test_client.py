"""Tests for RPC retry and chain registry behavior."""

from unittest.mock import Mock

import pytest

from eth.client import EthereumClient, RPCError, with_retry
from eth.registry import ChainRegistry


def test_retry_returns_after_transient_failures():
    """Two failures then a success returns the value."""
    fn = Mock(side_effect=[ConnectionError("reset"), TimeoutError("slow"), 42])
    sleeps = []

    assert with_retry(fn, "getBlockNumber", max_retries=3, retry_delay=2.0, sleep=sleeps.append) == 42
    assert fn.call_count == 3
    assert sleeps == [2.0, 2.0]


def test_retry_exhaustion_raises_rpc_error():
    """The last failure is chained to RPCError."""
    fn = Mock(side_effect=ConnectionError("down"))

    with pytest.raises(RPCError) as exc_info:
        with_retry(fn, "getLogs", max_retries=3, sleep=lambda _: None)

    assert fn.call_count == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_retry_passes_arguments():
    fn = Mock(return_value="ok")

    with_retry(fn, "call", 1, 2, key="value", sleep=lambda _: None)

    fn.assert_called_once_with(1, 2, key="value")


def test_client_get_logs_filter(test_config):
    """Filter params carry the checksummed address and inclusive range."""
    web3 = Mock()
    web3.eth.get_logs.return_value = []
    client = EthereumClient(test_config.chains["polygon"], web3=web3)

    client.get_logs("0x5fbdb2315678afecb367f032d93f642f64180aa3", 10, 20, topics=["0xabc"])

    web3.eth.get_logs.assert_called_once_with(
        {
            "fromBlock": 10,
            "toBlock": 20,
            "address": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
            "topics": ["0xabc"],
        }
    )


def test_fee_data_legacy_chain(test_config):
    """Without a base fee only the gas price is reported."""
    web3 = Mock()
    web3.eth.gas_price = 5
    web3.eth.get_block.return_value = {}
    client = EthereumClient(test_config.chains["polygon"], web3=web3)

    fee_data = client.get_fee_data()

    assert fee_data.gas_price == 5
    assert fee_data.max_fee_per_gas is None


def test_fee_data_eip1559_chain(test_config):
    web3 = Mock()
    web3.eth.gas_price = 5
    web3.eth.get_block.return_value = {"baseFeePerGas": 100}
    web3.eth.max_priority_fee = 2
    client = EthereumClient(test_config.chains["polygon"], web3=web3)

    fee_data = client.get_fee_data()

    assert fee_data.max_fee_per_gas == 202
    assert fee_data.max_priority_fee_per_gas == 2


def test_registry_skips_unreachable_chain(test_config):
    """Chains whose endpoint is down are left out; the main chain stays available."""

    def client_factory(descriptor, config):
        web3 = Mock()
        web3.is_connected.return_value = descriptor.is_main
        return EthereumClient(descriptor, web3=web3)

    registry = ChainRegistry.from_config(test_config, client_factory=client_factory)

    assert [h.name for h in registry.available()] == ["polygon"]
    assert registry.main().name == "polygon"
    assert registry.get("base") is None


def test_registry_without_main_chain(test_config):
    def client_factory(descriptor, config):
        web3 = Mock()
        web3.is_connected.return_value = not descriptor.is_main
        return EthereumClient(descriptor, web3=web3)

    registry = ChainRegistry.from_config(test_config, client_factory=client_factory)

    with pytest.raises(RuntimeError, match="Main chain"):
        registry.main()
