"""Event log decoder."""

from typing import Any, Dict, Optional

from web3 import Web3
from web3.types import LogReceipt

from eth.abi_loader import get_main_chain_abi
from eth.topics import event_signature
from log import get_logger

logger = get_logger(__name__)

# Contract instance for decoding (no provider needed)
_main_contract = None


def _get_main_contract() -> Any:
    """Get Web3 contract instance for the main-chain ABI.

    Returns:
        Web3 contract instance
    """
    global _main_contract
    if _main_contract is None:
        _main_contract = Web3().eth.contract(abi=get_main_chain_abi())
    return _main_contract


def _to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value if value.startswith("0x") else "0x" + value
    return Web3.to_hex(value)


def decode_event(log: LogReceipt) -> Optional[Dict[str, Any]]:
    """Decode a log receipt into structured event data.

    Args:
        log: Raw log receipt from get_logs

    Returns:
        Decoded event data with keys:
        - event_name: Name of the event
        - args: Dictionary of decoded parameters
        - block_number: Block number
        - tx_hash: Transaction hash
        - log_index: Log index
        - address: Contract address
        None if decoding fails
    """
    try:
        contract = _get_main_contract()

        # The first topic is the event signature hash
        event_topic = _to_hex(log["topics"][0]) if log["topics"] else None
        if not event_topic:
            return None

        for event_abi in contract.abi:
            if event_abi.get("type") != "event":
                continue

            computed_topic = Web3.to_hex(Web3.keccak(text=event_signature(event_abi)))
            if computed_topic.lower() != event_topic.lower():
                continue

            event_name = event_abi["name"]
            try:
                event_handler = getattr(contract.events, event_name)
                decoded = event_handler().process_log(log)
            except Exception as decode_error:
                logger.debug(f"Error decoding {event_name}: {decode_error}")
                return None

            return {
                "event_name": decoded["event"],
                "args": dict(decoded["args"]),
                "block_number": log["blockNumber"],
                "tx_hash": _to_hex(log["transactionHash"]),
                "log_index": log["logIndex"],
                "address": log["address"],
            }

        logger.debug(f"Event not found in main chain ABI for topic {event_topic}")
        return None

    except Exception as e:
        logger.warning(f"Failed to decode event: {e}")
        return None
