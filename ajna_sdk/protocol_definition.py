"""Declarative description of an initial Ajna protocol state.

Build a scenario without touching the network, then hand it to
:py:class:`ajna_sdk.runner.AjnaProtocolRunner`:

.. code-block:: python

    state = (
        InitialProtocolStateBuilder()
        .add_token(DAI_ADDRESS, DAI_RESERVE_ADDRESS)
        .add_token(MKR_ADDRESS, MKR_RESERVE_ADDRESS)
        .deploy_pool(MKR_ADDRESS, DAI_ADDRESS)
        .with_lenders(10)
        .with_token(DAI_ADDRESS, 100_000 * 10**18)
        .add()
        .with_borrowers(10)
        .with_token(MKR_ADDRESS, 100 * 10**18)
        .add()
        .build()
    )

.. warning::

    :py:meth:`InitialProtocolStateBuilder.with_lenders` and :py:meth:`InitialProtocolStateBuilder.with_borrowers`
    add the same :py:class:`AjnaUser` instance many times. Mutating one of them after ``build()``
    mutates all of them.
"""

from dataclasses import dataclass, field
from typing import List

from ajna_sdk.constants import DAI_ADDRESS, DAI_RESERVE_ADDRESS, MKR_ADDRESS, MKR_RESERVE_ADDRESS


@dataclass
class TokenWithReserve:
    """ERC-20 token used in the protocol.

    :param token_address: address of ERC-20 token contract
    :param reserve_address: account with a large token balance, used to top up test users
    """

    token_address: str
    reserve_address: str


@dataclass
class PoolsToDeploy:
    """Collateral and quote token pair for a new ERC-20 pool."""

    collateral_address: str
    quote_token_address: str


@dataclass
class InitialUserTokenBalance:
    """Token balance a user starts with.

    :param approve_max: pre-approve the maximum allowance to every pool in the protocol
    """

    token_address: str
    amount: int
    approve_max: bool = False


@dataclass
class QuoteTokenDeposits:
    """Random quote token deposit: amount and bucket index are drawn from the given inclusive ranges."""

    min_deposit_amount: int
    max_deposit_amount: int
    min_deposit_price_index: int
    max_deposit_price_index: int


@dataclass
class CollateralTokenDeposits:
    """Random collateral pledge, amount drawn from the given inclusive range."""

    min_deposit_amount: int
    max_deposit_amount: int


@dataclass
class Borrows:
    """Random loan drawn against pledged collateral.

    :param limit_price_index: revert if LUP would move below this bucket
    """

    min_borrow_amount: int
    max_borrow_amount: int
    limit_price_index: int


@dataclass
class PoolInteractions:
    """What a user does in a pool right after the setup."""

    quote_token_address: str
    collateral_address: str

    quote_deposits: List[QuoteTokenDeposits] = field(default_factory=list)
    collateral_deposits: List[CollateralTokenDeposits] = field(default_factory=list)
    borrows: List[Borrows] = field(default_factory=list)


@dataclass
class AjnaUser:
    """Lender or borrower definition."""

    token_balances: List[InitialUserTokenBalance] = field(default_factory=list)

    pool_interactions: List[PoolInteractions] = field(default_factory=list)


@dataclass
class InitialProtocolState:
    """Everything :py:class:`ajna_sdk.runner.AjnaProtocolRunner` needs to set up the protocol.

    - tokens: tokens used in the protocol, with their reserves
    - deploy_pools: pools to deploy
    - lenders: lender definitions
    - borrowers: borrower definitions
    """

    lenders: List[AjnaUser] = field(default_factory=list)
    borrowers: List[AjnaUser] = field(default_factory=list)
    tokens: List[TokenWithReserve] = field(default_factory=list)
    deploy_pools: List[PoolsToDeploy] = field(default_factory=list)

    @staticmethod
    def DEFAULT() -> "InitialProtocolState":
        """Default protocol state.

        - 10 lenders and 10 borrowers without token balances
        - DAI and MKR tokens
        - a MKR/DAI pool
        """
        options = InitialProtocolStateBuilder()
        for _ in range(10):
            options.with_lender().add()
            options.with_borrower().add()

        options.add_token(DAI_ADDRESS, DAI_RESERVE_ADDRESS)
        options.add_token(MKR_ADDRESS, MKR_RESERVE_ADDRESS)

        options.deploy_pool(MKR_ADDRESS, DAI_ADDRESS)

        return options.build()


class InitialProtocolStateBuilder:
    """Fluent builder for :py:class:`InitialProtocolState`."""

    def __init__(self) -> None:
        self._options = InitialProtocolState()

    def build(self) -> InitialProtocolState:
        return self._options

    def with_lender(self) -> "AjnaUserBuilder":
        """Start a lender definition. Finish with ``add()``."""
        return AjnaUserBuilder(self, self._options.lenders)

    def with_lenders(self, number_of_lenders: int) -> "MultipleAjnaUsersBuilder":
        """Start a definition shared by many lenders.

        :param number_of_lenders: how many times the definition is added
        """
        return MultipleAjnaUsersBuilder(self, self._options.lenders, number_of_lenders)

    def with_borrower(self) -> "AjnaUserBuilder":
        """Start a borrower definition. Finish with ``add()``."""
        return AjnaUserBuilder(self, self._options.borrowers)

    def with_borrowers(self, number_of_borrowers: int) -> "MultipleAjnaUsersBuilder":
        """Start a definition shared by many borrowers.

        :param number_of_borrowers: how many times the definition is added
        """
        return MultipleAjnaUsersBuilder(self, self._options.borrowers, number_of_borrowers)

    def add_token(self, address: str, reserve_address: str) -> "InitialProtocolStateBuilder":
        """Add a token used in the protocol.

        Tokens are not deduplicated.

        :param address: address of ERC-20 token contract
        :param reserve_address: account with a large balance of the token
        """
        self._options.tokens.append(TokenWithReserve(address, reserve_address))
        return self

    def deploy_pool(self, collateral_address: str, quote_token_address: str) -> "InitialProtocolStateBuilder":
        self._options.deploy_pools.append(PoolsToDeploy(collateral_address, quote_token_address))
        return self


class AjnaUserBuilder:
    """Builds one :py:class:`AjnaUser`."""

    def __init__(self, builder: InitialProtocolStateBuilder, accounts: List[AjnaUser]):
        self._account_params = AjnaUser()
        self._builder = builder
        self._accounts = accounts

    def add(self) -> InitialProtocolStateBuilder:
        """Finalise the user and add it to the protocol state."""
        self._accounts.append(self._account_params)
        return self._builder

    def with_token(self, address: str, amount: int, *, approve_max=True) -> "AjnaUserBuilder":
        """Give the user an initial token balance.

        :param address: address of ERC-20 token contract
        :param amount: raw token amount
        :param approve_max: pre-approve the maximum allowance to every pool
        """
        self._account_params.token_balances.append(InitialUserTokenBalance(address, amount, approve_max))
        return self

    def interacts_with_pool(self, pool_interactions_definition: PoolInteractions) -> "AjnaUserBuilder":
        self._account_params.pool_interactions.append(pool_interactions_definition)
        return self


class MultipleAjnaUsersBuilder(AjnaUserBuilder):
    """Builds one :py:class:`AjnaUser` and adds it ``amount`` times."""

    def __init__(self, builder: InitialProtocolStateBuilder, accounts: List[AjnaUser], amount: int):
        super().__init__(builder, accounts)
        assert amount >= 0, f"Got {amount} users"
        self._amount = amount

    def add(self) -> InitialProtocolStateBuilder:
        """Finalise the user and add it ``amount`` times, by reference."""
        for _ in range(self._amount):
            self._accounts.append(self._account_params)
        return self._builder
