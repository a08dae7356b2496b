"""Environment variable configuration.

All settings have mainnet defaults, so a bare environment works
against an Anvil fork of Ethereum mainnet.

Environment variables:

- ``JSON_RPC_ETHEREUM``: Ethereum mainnet JSON-RPC URL to fork

- ``AJNA_ERC20_POOL_FACTORY``: ERC20PoolFactory address

- ``AJNA_POOL_INFO_UTILS``: PoolInfoUtils address

- ``AJNA_TOKEN``: AJNA token address

- ``AJNA_GAS_PRICE_GWEI``: Gas price used in gas cost estimates (default: 50)

- ``AJNA_ETH_PRICE_USD``: ETH price used in gas cost estimates (default: 1700)

- ``AJNA_DEPOSIT_EXPIRY_SECONDS``: How long quote token and collateral deposits stay valid (default: 30)

- ``AJNA_ACTOR_ETH_BALANCE``: ETH given to each new test actor on Anvil (default: 100)
"""

import os
from dataclasses import dataclass

from eth_typing import HexAddress

from ajna_sdk.constants import AJNA_TOKEN_ADDRESS, ERC20_POOL_FACTORY_ADDRESS, POOL_INFO_UTILS_ADDRESS

#: Gas price used in cost estimates
DEFAULT_GAS_PRICE_GWEI = 50.0

#: ETH/USD used in cost estimates
DEFAULT_ETH_PRICE_USD = 1700.0

#: Seconds added to the current block timestamp for addQuoteToken/addCollateral expiry
DEFAULT_DEPOSIT_EXPIRY_SECONDS = 30

#: ETH each new test actor gets for gas
DEFAULT_ACTOR_ETH_BALANCE = 100.0


@dataclass(slots=True)
class AjnaSdkConfig:
    """SDK settings."""

    #: Mainnet JSON-RPC to fork, if any
    json_rpc_url: str | None = None

    pool_factory_address: HexAddress = ERC20_POOL_FACTORY_ADDRESS

    pool_info_utils_address: HexAddress = POOL_INFO_UTILS_ADDRESS

    ajna_token_address: HexAddress = AJNA_TOKEN_ADDRESS

    gas_price_gwei: float = DEFAULT_GAS_PRICE_GWEI

    eth_price_usd: float = DEFAULT_ETH_PRICE_USD

    deposit_expiry_seconds: int = DEFAULT_DEPOSIT_EXPIRY_SECONDS

    #: In ETH, not wei
    actor_eth_balance: float = DEFAULT_ACTOR_ETH_BALANCE


def create_config_from_env() -> AjnaSdkConfig:
    """Create :py:class:`AjnaSdkConfig` from environment variables.

    See the module documentation for the variable list.

    :return:
        Configured instance
    """

    def get_str(key: str, default: str | None) -> str | None:
        value = os.environ.get(key)
        return value if value else default

    def get_float(key: str, default: float) -> float:
        value = os.environ.get(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.environ.get(key)
        return int(value) if value else default

    return AjnaSdkConfig(
        json_rpc_url=get_str("JSON_RPC_ETHEREUM", None),
        pool_factory_address=get_str("AJNA_ERC20_POOL_FACTORY", ERC20_POOL_FACTORY_ADDRESS),
        pool_info_utils_address=get_str("AJNA_POOL_INFO_UTILS", POOL_INFO_UTILS_ADDRESS),
        ajna_token_address=get_str("AJNA_TOKEN", AJNA_TOKEN_ADDRESS),
        gas_price_gwei=get_float("AJNA_GAS_PRICE_GWEI", DEFAULT_GAS_PRICE_GWEI),
        eth_price_usd=get_float("AJNA_ETH_PRICE_USD", DEFAULT_ETH_PRICE_USD),
        deposit_expiry_seconds=get_int("AJNA_DEPOSIT_EXPIRY_SECONDS", DEFAULT_DEPOSIT_EXPIRY_SECONDS),
        actor_eth_balance=get_float("AJNA_ACTOR_ETH_BALANCE", DEFAULT_ACTOR_ETH_BALANCE),
    )
