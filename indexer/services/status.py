"""Indexer status reporting for the query API."""

from typing import Any, Dict

from db.models import IndexerState
from db.session import get_session
from eth.registry import ChainRegistry
from log import get_logger

logger = get_logger(__name__)

REALTIME_THRESHOLD = 200


def get_indexer_status(registry: ChainRegistry, realtime_threshold: int = REALTIME_THRESHOLD) -> Dict[str, Dict[str, Any]]:
    """Per-chain sync status.

    Returns:
        Mapping of chain name to currentBlock, lastIndexedBlock, blocksRemaining,
        lastUpdated, syncStatus and isRealtime; a chain whose head cannot be
        read maps to {"error": message}
    """
    with get_session() as session:
        states = {
            state.chain: (int(state.last_indexed_block), state.updated_at)
            for state in session.query(IndexerState).all()
        }

    status: Dict[str, Dict[str, Any]] = {}
    for handle in registry.available():
        try:
            current_block = handle.client.get_latest_block()
        except Exception as e:
            logger.error(f"Error getting status for {handle.name}: {e}")
            status[handle.name] = {"error": str(e)}
            continue

        last_block, last_updated = states.get(handle.name, (0, None))
        blocks_remaining = current_block - last_block

        if last_block > 0 and current_block > 0:
            sync_status = f"{last_block / current_block * 100:.2f}%"
        else:
            sync_status = "0%"

        status[handle.name] = {
            "currentBlock": current_block,
            "lastIndexedBlock": last_block,
            "blocksRemaining": blocks_remaining,
            "lastUpdated": last_updated.isoformat() if last_updated else None,
            "syncStatus": sync_status,
            "isRealtime": blocks_remaining <= realtime_threshold,
        }

    return status
