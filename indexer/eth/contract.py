"""Bound crowdfunding contract: campaign reads and donate() transactions."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from web3 import Web3

from eth.abi_loader import get_main_chain_abi, get_remote_chain_abi
from eth.client import EthereumClient

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

STABLE_TOKEN_DECIMALS = 8

CAMPAIGN_FIELDS = (
    "name",
    "target",
    "description",
    "socialLink",
    "imageId",
    "creator",
    "ended",
    "totalStable",
)


def stable_to_decimal(raw: int, decimals: int = STABLE_TOKEN_DECIMALS) -> Decimal:
    """Convert an on-chain fixed-point stable value to whole units."""
    return Decimal(int(raw)).scaleb(-decimals)


@dataclass(frozen=True)
class OnChainCampaign:
    """Campaign struct as returned by the contract's campaigns(id) read."""

    name: str
    target: int
    description: str
    social_link: str
    image_id: int
    creator: str
    ended: bool
    total_stable: int

    @classmethod
    def from_call_result(cls, result: Any) -> "OnChainCampaign":
        if isinstance(result, dict):
            values = dict(result)
        else:
            values = dict(zip(CAMPAIGN_FIELDS, result))
        return cls(
            name=values["name"],
            target=int(values["target"]),
            description=values["description"],
            social_link=values["socialLink"],
            image_id=int(values["imageId"]),
            creator=values["creator"],
            ended=bool(values["ended"]),
            total_stable=int(values["totalStable"]),
        )

    def target_amount(self, decimals: int = STABLE_TOKEN_DECIMALS) -> Decimal:
        return stable_to_decimal(self.target, decimals)

    def amount_raised(self, decimals: int = STABLE_TOKEN_DECIMALS) -> Decimal:
        return stable_to_decimal(self.total_stable, decimals)


class CrowdfundingContract:
    """Contract handle bound to one chain's client."""

    def __init__(self, client: EthereumClient, address: str, is_main: bool = True):
        self.client = client
        self.address = Web3.to_checksum_address(address)
        abi = get_main_chain_abi() if is_main else get_remote_chain_abi()
        self.contract = client.web3.eth.contract(address=self.address, abi=abi)

    def read_campaign(self, campaign_id: int) -> OnChainCampaign:
        """Read the canonical campaign struct (retried)."""
        result = self.client.retry(
            lambda: self.contract.functions.campaigns(int(campaign_id)).call(),
            f"fetch-campaign-{campaign_id}",
        )
        return OnChainCampaign.from_call_result(result)

    def estimate_donate_gas(self, campaign_id: int, sender: str, value: int) -> int:
        """Gas estimate for a native-coin donate() of ``value`` wei from ``sender``."""
        return self.client.retry(
            lambda: self.contract.functions.donate(int(campaign_id), ZERO_ADDRESS, 0).estimate_gas(
                {"from": Web3.to_checksum_address(sender), "value": value}
            ),
            "estimateGas-donate",
        )

    def build_donate_transaction(
        self,
        campaign_id: int,
        sender: str,
        value: int,
        nonce: int,
        gas_limit: int,
        max_fee_per_gas: int,
        max_priority_fee_per_gas: int,
        chain_id: Optional[int] = None,
    ) -> dict[str, Any]:
        """Unsigned native-coin donate() transaction with every field set explicitly."""
        params: dict[str, Any] = {
            "from": Web3.to_checksum_address(sender),
            "value": value,
            "nonce": nonce,
            "gas": gas_limit,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": max_priority_fee_per_gas,
        }
        if chain_id is not None:
            params["chainId"] = chain_id
        return self.contract.functions.donate(int(campaign_id), ZERO_ADDRESS, 0).build_transaction(params)
