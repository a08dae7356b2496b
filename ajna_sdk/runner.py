"""Bring an :py:class:`ajna_sdk.protocol.AjnaProtocol` to a declared initial state."""

import logging
import random

from eth_typing import HexAddress

from ajna_sdk.constants import MAX_FENWICK_INDEX
from ajna_sdk.protocol import AjnaProtocol
from ajna_sdk.protocol_definition import AjnaUser, InitialProtocolState

logger = logging.getLogger(__name__)


class AjnaProtocolRunner:
    """Execute an :py:class:`InitialProtocolState` against the chain.

    Steps run in this order:

    1. Deploy pools, or pick up existing ones on a mainnet fork

    2. Register token clients

    3. Create lenders, top up their balances and approve pools

    4. Create borrowers, top up their balances and approve pools

    5. Run pool interactions, lenders first

    Any failure is raised as is. Running the same state twice
    creates a second set of actors.
    """

    def __init__(self, protocol: AjnaProtocol, random_seed: int | None = None) -> None:
        """
        :param random_seed:
            Seed for random pool interaction amounts and buckets
        """
        self.protocol = protocol
        self.random = random.Random(random_seed)

    def prepare_protocol_to_state_by_definition(self, protocol_definition: InitialProtocolState | None = None):
        """Run all the setup steps.

        :param protocol_definition:
            If not given, use :py:meth:`InitialProtocolState.DEFAULT`
        """
        options = protocol_definition if protocol_definition else InitialProtocolState.DEFAULT()

        self.deploy_pools_by_definition(options)
        self.create_erc20_token_clients_by_definition(options)
        lenders = self.prepare_lenders_by_definition(options)
        borrowers = self.prepare_borrowers_by_definition(options)
        self.perform_pool_interactions(zip(lenders, options.lenders))
        self.perform_pool_interactions(zip(borrowers, options.borrowers))

        logger.info(
            "Protocol ready: %d pools, %d tokens, %d lenders, %d borrowers",
            len(self.protocol.pools),
            len(self.protocol.tokens),
            len(self.protocol.lenders),
            len(self.protocol.borrowers),
        )

    def deploy_pools_by_definition(self, protocol_definition: InitialProtocolState):
        for pool_options in protocol_definition.deploy_pools:
            self.protocol.get_pool(
                pool_options.collateral_address,
                pool_options.quote_token_address,
                force_deploy=True,
            )

    def create_erc20_token_clients_by_definition(self, protocol_definition: InitialProtocolState):
        for token_options in protocol_definition.tokens:
            self.protocol.add_token(token_options.token_address, token_options.reserve_address)

    def prepare_lenders_by_definition(self, protocol_definition: InitialProtocolState) -> list[HexAddress]:
        lenders = []
        for lender_options in protocol_definition.lenders:
            lender = self.protocol.add_lender()
            self._fund_user(lender, lender_options)
            lenders.append(lender)
        return lenders

    def prepare_borrowers_by_definition(self, protocol_definition: InitialProtocolState) -> list[HexAddress]:
        borrowers = []
        for borrower_options in protocol_definition.borrowers:
            borrower = self.protocol.add_borrower()
            self._fund_user(borrower, borrower_options)
            borrowers.append(borrower)
        return borrowers

    def _fund_user(self, user: HexAddress, user_options: AjnaUser):
        for token_options in user_options.token_balances:
            token = self.protocol.get_token(token_options.token_address)
            token.top_up(user, token_options.amount)

            if token_options.approve_max:
                for pool in self.protocol.pools:
                    token.approve_max(pool.address, user)

    def perform_pool_interactions(self, users):
        """Random deposits and loans.

        :param users:
            Iterable of (address, :py:class:`AjnaUser`) pairs
        """
        for user, user_options in users:
            for interaction in user_options.pool_interactions:
                pool = self.protocol.get_pool(interaction.collateral_address, interaction.quote_token_address)

                for deposit in interaction.quote_deposits:
                    amount = self.random.randint(deposit.min_deposit_amount, deposit.max_deposit_amount)
                    index = self.random.randint(deposit.min_deposit_price_index, deposit.max_deposit_price_index)
                    pool.add_quote_token(user, amount, index)

                for deposit in interaction.collateral_deposits:
                    amount = self.random.randint(deposit.min_deposit_amount, deposit.max_deposit_amount)
                    pool.draw_debt(user, 0, MAX_FENWICK_INDEX, amount)

                for loan in interaction.borrows:
                    amount = self.random.randint(loan.min_borrow_amount, loan.max_borrow_amount)
                    pool.draw_debt(user, amount, loan.limit_price_index, 0)
