"""ABI file loader for the bundled contract ABIs."""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable

from log import get_logger

logger = get_logger(__name__)

ABI_DIR = Path(__file__).parent / "abi"

# Entries the indexer and relay call by name
MAIN_CHAIN_ENTRIES = (
    "CampaignCreated",
    "CampaignEdited",
    "CampaignEnded",
    "DonationMade",
    "WithdrawalRequested",
    "WithdrawalProcessed",
    "campaigns",
    "donate",
)
REMOTE_CHAIN_ENTRIES = ("donate",)


def _require_entries(contract_name: str, abi: list[Dict[str, Any]], names: Iterable[str]) -> None:
    present = {entry.get("name") for entry in abi}
    missing = [name for name in names if name not in present]
    if missing:
        raise ValueError(f"ABI {contract_name} is missing entries: {', '.join(missing)}")


@lru_cache(maxsize=None)
def load_abi(contract_name: str) -> list[Dict[str, Any]]:
    """Load a bundled ABI by contract name.

    Raises:
        FileNotFoundError: If the ABI file doesn't exist
        ValueError: If the file is not a JSON list
    """
    abi_path = ABI_DIR / f"{contract_name}.json"
    if not abi_path.exists():
        raise FileNotFoundError(f"ABI file not found: {abi_path.absolute()}")

    try:
        abi = json.loads(abi_path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in ABI file {abi_path}: {e}") from e

    if not isinstance(abi, list):
        raise ValueError(f"ABI must be a list, got {type(abi)}")

    logger.debug(f"Loaded ABI for {contract_name} ({len(abi)} entries)")
    return abi


def get_main_chain_abi() -> list[Dict[str, Any]]:
    """ABI of the main-chain crowdfunding contract (events, campaign reads, donate)."""
    abi = load_abi("MainChain")
    _require_entries("MainChain", abi, MAIN_CHAIN_ENTRIES)
    return abi


def get_remote_chain_abi() -> list[Dict[str, Any]]:
    """ABI of the secondary-chain contract."""
    abi = load_abi("RemoteChain")
    _require_entries("RemoteChain", abi, REMOTE_CHAIN_ENTRIES)
    return abi
