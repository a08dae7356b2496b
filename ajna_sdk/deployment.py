"""Ajna deployment description."""

from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from ajna_sdk.abi import get_deployed_contract
from ajna_sdk.constants import AJNA_TOKEN_ADDRESS, ERC20_NON_SUBSET_HASH, ERC20_POOL_FACTORY_ADDRESS, POOL_INFO_UTILS_ADDRESS


@dataclass(frozen=True)
class AjnaDeployment:
    """Describe Ajna deployment."""

    #: The Web3 instance for which all the contracts here are bound
    web3: Web3

    #: ERC20PoolFactory contract
    pool_factory: Contract

    #: PoolInfoUtils contract
    pool_info_utils: Contract

    #: AJNA token, burned in reserve auctions
    ajna_token_address: HexAddress

    def get_pool_address(self, collateral_address: HexAddress | str, quote_token_address: HexAddress | str) -> HexAddress:
        """Address of a deployed ERC-20 pool.

        :return:
            Zero address if the pool does not exist
        """
        return self.pool_factory.functions.deployedPools(
            ERC20_NON_SUBSET_HASH,
            Web3.to_checksum_address(collateral_address),
            Web3.to_checksum_address(quote_token_address),
        ).call()


def fetch_deployment(
    web3: Web3,
    pool_factory_address: HexAddress | str = ERC20_POOL_FACTORY_ADDRESS,
    pool_info_utils_address: HexAddress | str = POOL_INFO_UTILS_ADDRESS,
    ajna_token_address: HexAddress | str = AJNA_TOKEN_ADDRESS,
) -> AjnaDeployment:
    """Construct Ajna deployment based on on-chain data.

    Defaults to Ethereum mainnet.

    :return:
        Data class representing Ajna deployment
    """
    pool_factory = get_deployed_contract(web3, "ajna/ERC20PoolFactory.json", pool_factory_address)
    pool_info_utils = get_deployed_contract(web3, "ajna/PoolInfoUtils.json", pool_info_utils_address)
    return AjnaDeployment(
        web3=web3,
        pool_factory=pool_factory,
        pool_info_utils=pool_info_utils,
        ajna_token_address=Web3.to_checksum_address(ajna_token_address),
    )
