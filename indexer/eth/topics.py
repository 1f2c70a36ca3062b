"""Event topic hash computation."""

from web3 import Web3

from eth.abi_loader import get_main_chain_abi

# Cache topic hashes
_TOPIC_CACHE: dict[str, str] = {}

# Log categories indexed in their own write transaction
CAMPAIGN_EVENTS = ("CampaignCreated", "CampaignEdited", "CampaignEnded")
DONATION_EVENTS = ("DonationMade",)
WITHDRAWAL_EVENTS = ("WithdrawalRequested", "WithdrawalProcessed")


def _compute_topic(event_signature: str) -> str:
    """Compute keccak256 hash of event signature.

    Args:
        event_signature: Event signature (e.g., "DonationMade(uint256,address,uint256)")

    Returns:
        Topic hash (0x-prefixed hex string)
    """
    return Web3.to_hex(Web3.keccak(text=event_signature))


def event_signature(event_abi: dict) -> str:
    """Canonical signature of an event ABI entry."""
    input_types = ",".join(inp["type"] for inp in event_abi.get("inputs", []))
    return f"{event_abi['name']}({input_types})"


def get_event_topic(event_name: str) -> str:
    """Get the topic hash for a main-chain contract event.

    Raises:
        KeyError: If the event is not part of the ABI
    """
    if event_name not in _TOPIC_CACHE:
        for entry in get_main_chain_abi():
            if entry.get("type") == "event" and entry["name"] == event_name:
                _TOPIC_CACHE[event_name] = _compute_topic(event_signature(entry))
                break
        else:
            raise KeyError(f"Event {event_name} not found in main chain ABI")
    return _TOPIC_CACHE[event_name]
