"""Ajna protocol test session.

:py:class:`AjnaProtocol` keeps track of the actors, tokens and pools of a
test session on an Anvil mainnet fork.

Example:

.. code-block:: python

    protocol = AjnaProtocol(web3)
    protocol.add_token(DAI_ADDRESS, DAI_RESERVE_ADDRESS)
    protocol.add_token(MKR_ADDRESS, MKR_RESERVE_ADDRESS)
    pool = protocol.get_pool(MKR_ADDRESS, DAI_ADDRESS, force_deploy=True)

    lender = protocol.add_lender()
    dai = protocol.get_token(DAI_ADDRESS)
    dai.top_up(lender, 10_000 * 10**18)
    dai.approve_max(pool.address, lender)
    pool.add_quote_token(lender, 10_000 * 10**18, 3000)
"""

import logging
from typing import TYPE_CHECKING

from eth_account import Account
from eth_typing import HexAddress
from web3 import Web3

from ajna_sdk.abi import get_deployed_contract
from ajna_sdk.anvil import is_anvil, set_balance, unlock_account
from ajna_sdk.config import AjnaSdkConfig, create_config_from_env
from ajna_sdk.constants import DEFAULT_INTEREST_RATE
from ajna_sdk.deployment import AjnaDeployment, fetch_deployment
from ajna_sdk.pool_client import AjnaPoolClient, is_deployed_pool_address
from ajna_sdk.token_client import ERC20TokenClient, create_token_client
from ajna_sdk.tx import TransactionReverted, send_transaction

if TYPE_CHECKING:
    from ajna_sdk.runner import AjnaProtocolRunner

logger = logging.getLogger(__name__)


class PoolDeploymentFailed(Exception):
    """ERC20PoolFactory.deployPool() reverted."""


class PoolNotDeployed(Exception):
    """No pool exists for the token pair."""


class TokenNotRegistered(Exception):
    """Token was not added with :py:meth:`AjnaProtocol.add_token`."""


class AjnaProtocol:
    """Actors, tokens and pools of a test session."""

    def __init__(self, web3: Web3, deployment: AjnaDeployment | None = None, config: AjnaSdkConfig | None = None):
        """
        :param deployment:
            Ajna contracts. If not given, read addresses from the config.

        :param config:
            If not given, read from environment variables.
        """
        self.web3 = web3
        self.config = config or create_config_from_env()
        self.deployment = deployment or fetch_deployment(
            web3,
            self.config.pool_factory_address,
            self.config.pool_info_utils_address,
            self.config.ajna_token_address,
        )
        self._anvil = is_anvil(web3)
        self._used_node_accounts = 0

        #: Pays for pool deployments
        self.deployer: HexAddress = self.create_account()

        self.pools: list[AjnaPoolClient] = []
        self.lenders: list[HexAddress] = []
        self.borrowers: list[HexAddress] = []

        #: Lowercased token address -> client
        self.tokens: dict[str, ERC20TokenClient] = {}

    def get_runner(self, random_seed: int | None = None) -> "AjnaProtocolRunner":
        from ajna_sdk.runner import AjnaProtocolRunner

        return AjnaProtocolRunner(self, random_seed=random_seed)

    def create_account(self) -> HexAddress:
        """Get a new address we can transact as.

        - On Anvil, create a random account, impersonate it and give it ETH for gas

        - Otherwise, take the next unused account of the node
        """
        if self._anvil:
            address = Account.create().address
            unlock_account(self.web3, address)
            set_balance(self.web3, address, int(self.config.actor_eth_balance * 10**18))
            logger.debug("Created Anvil account %s", address)
            return address

        accounts = self.web3.eth.accounts
        if self._used_node_accounts >= len(accounts):
            raise RuntimeError(f"All {len(accounts)} node accounts are in use")
        address = accounts[self._used_node_accounts]
        self._used_node_accounts += 1
        return address

    def deploy_erc20_pool(
        self,
        collateral_address: HexAddress | str,
        quote_token_address: HexAddress | str,
        interest_rate: int = DEFAULT_INTEREST_RATE,
    ) -> AjnaPoolClient:
        """Deploy a new pool through the factory.

        :param interest_rate:
            Initial interest rate as WAD

        :raise PoolDeploymentFailed:
            E.g. the pool already exists
        """
        factory = self.deployment.pool_factory
        try:
            send_transaction(
                self.web3,
                factory.functions.deployPool(
                    Web3.to_checksum_address(collateral_address),
                    Web3.to_checksum_address(quote_token_address),
                    interest_rate,
                ),
                self.deployer,
            )
        except TransactionReverted as e:
            raise PoolDeploymentFailed(f"Failed to deploy pool collateral {collateral_address} - quote {quote_token_address}. Revert reason: {e.revert_reason}") from e

        pool_address = self.deployment.get_pool_address(collateral_address, quote_token_address)
        logger.info("Deployed pool %s, collateral %s, quote %s", pool_address, collateral_address, quote_token_address)
        return self._track_pool(pool_address)

    def _track_pool(self, pool_address: HexAddress) -> AjnaPoolClient:
        for pool in self.pools:
            if pool.address.lower() == pool_address.lower():
                return pool

        pool_contract = get_deployed_contract(self.web3, "ajna/ERC20Pool.json", pool_address)
        pool = AjnaPoolClient(self, pool_contract)
        self.pools.append(pool)
        return pool

    def get_pool(
        self,
        collateral_address: HexAddress | str,
        quote_token_address: HexAddress | str,
        *,
        force_deploy=False,
    ) -> AjnaPoolClient:
        """Get the pool for a token pair.

        Pools fetched here are added to :py:attr:`pools`, so runner approvals cover them.

        :param force_deploy:
            Deploy the pool if it does not exist

        :raise PoolNotDeployed:
            The pool does not exist and we did not deploy it
        """
        pool_address = self.deployment.get_pool_address(collateral_address, quote_token_address)

        if is_deployed_pool_address(pool_address):
            return self._track_pool(pool_address)

        if force_deploy:
            return self.deploy_erc20_pool(collateral_address, quote_token_address)

        raise PoolNotDeployed(f"Pool not deployed. Deploy it first for collateral {collateral_address} and quote token {quote_token_address}")

    def add_token(self, token_address: HexAddress | str, reserve_address: HexAddress | str) -> ERC20TokenClient:
        """Register a token and its reserve.

        On Anvil the reserve is impersonated and given ETH for gas.
        A token added twice replaces the earlier client.
        """
        if self._anvil:
            unlock_account(self.web3, reserve_address)
            set_balance(self.web3, reserve_address, int(self.config.actor_eth_balance * 10**18))

        client = create_token_client(self.web3, token_address, reserve_address)
        self.tokens[token_address.lower()] = client
        logger.info("Added token %s with reserve %s", client, reserve_address)
        return client

    def add_lender(self, *, account: HexAddress | str | None = None) -> HexAddress:
        """Add a lender.

        :param account:
            Existing address to use. If not given, create one.
        """
        if account is None:
            account = self.create_account()
        self.lenders.append(account)
        return account

    def add_borrower(self, *, account: HexAddress | str | None = None) -> HexAddress:
        """Add a borrower.

        :param account:
            Existing address to use. If not given, create one.
        """
        if account is None:
            account = self.create_account()
        self.borrowers.append(account)
        return account

    def get_lender(self, index: int) -> HexAddress:
        return self.lenders[index]

    def get_borrower(self, index: int) -> HexAddress:
        return self.borrowers[index]

    def get_token(self, token_address: HexAddress | str) -> ERC20TokenClient:
        """Get a registered token client.

        :raise TokenNotRegistered:
            Token was not added
        """
        client = self.tokens.get(token_address.lower())
        if client is None:
            raise TokenNotRegistered(f"Token {token_address} not found. Add it first with corresponding reserve address")
        return client

    def top_up_erc20_token(self, user: HexAddress | str, token_address: HexAddress | str, amount: int):
        self.get_token(token_address).top_up(user, amount)
