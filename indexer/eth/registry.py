"""Chain registry - one RPC client and bound contract per configured chain."""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from config import ChainDescriptor, Config
from eth.client import EthereumClient
from eth.contract import CrowdfundingContract
from log import get_logger

logger = get_logger(__name__)


@dataclass
class ChainHandle:
    """Connection and contract for one chain."""

    descriptor: ChainDescriptor
    client: EthereumClient
    contract: CrowdfundingContract

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def is_main(self) -> bool:
        return self.descriptor.is_main


ClientFactory = Callable[[ChainDescriptor, Config], EthereumClient]


class ChainRegistry:
    """Constructed once per process and passed to every component that talks to a chain."""

    def __init__(self, descriptors: Dict[str, ChainDescriptor], handles: Dict[str, ChainHandle]):
        self.descriptors = descriptors
        self._handles = handles

    @classmethod
    def from_config(
        cls,
        config: Config,
        client_factory: ClientFactory = EthereumClient.from_config,
        check_connection: bool = True,
    ) -> "ChainRegistry":
        """Build a handle for every configured chain.

        Chains whose RPC endpoint cannot be reached are left out and reported
        as unavailable; configuration itself was validated by Config.
        """
        config.validate()

        handles: Dict[str, ChainHandle] = {}
        for name, descriptor in config.chains.items():
            try:
                client = client_factory(descriptor, config)
                if check_connection and not client.is_connected():
                    logger.warning(f"Skipping {name}: RPC endpoint not reachable")
                    continue
                contract = CrowdfundingContract(client, descriptor.contract_address, is_main=descriptor.is_main)
                handles[name] = ChainHandle(descriptor=descriptor, client=client, contract=contract)
                logger.info(f"Initialized provider and contract for {name}")
            except Exception as e:
                logger.error(f"Failed to initialize {name}: {e}", exc_info=True)

        return cls(dict(config.chains), handles)

    def __iter__(self) -> Iterator[ChainHandle]:
        return iter(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def available(self) -> list[ChainHandle]:
        """Handles in configuration order."""
        return [self._handles[name] for name in self.descriptors if name in self._handles]

    def get(self, name: str) -> Optional[ChainHandle]:
        return self._handles.get(name)

    def main(self) -> ChainHandle:
        """The main chain handle.

        Raises:
            RuntimeError: If the main chain is not available
        """
        for handle in self._handles.values():
            if handle.is_main:
                return handle
        raise RuntimeError("Main chain provider or contract not available")
