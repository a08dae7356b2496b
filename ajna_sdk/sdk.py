"""Ready made protocol sessions.

Each helper creates an :py:class:`ajna_sdk.protocol.AjnaProtocol`
and runs :py:class:`ajna_sdk.runner.AjnaProtocolRunner` on it.
"""

from web3 import Web3

from ajna_sdk.constants import (
    COMP_ADDRESS,
    COMP_RESERVE_ADDRESS,
    DAI_ADDRESS,
    DAI_RESERVE_ADDRESS,
    MKR_ADDRESS,
    MKR_RESERVE_ADDRESS,
    USDT_ADDRESS,
    USDT_RESERVE_ADDRESS,
)
from ajna_sdk.deployment import AjnaDeployment
from ajna_sdk.protocol import AjnaProtocol
from ajna_sdk.protocol_definition import InitialProtocolState, InitialProtocolStateBuilder


def create_empty_sdk(web3: Web3, deployment: AjnaDeployment | None = None) -> AjnaProtocol:
    """No actors, no tokens, no pools."""
    return AjnaProtocol(web3, deployment)


def create_default_sdk(web3: Web3, deployment: AjnaDeployment | None = None) -> AjnaProtocol:
    """See :py:meth:`InitialProtocolState.DEFAULT`."""
    sdk = AjnaProtocol(web3, deployment)
    sdk.get_runner().prepare_protocol_to_state_by_definition(InitialProtocolState.DEFAULT())
    return sdk


def create_sdk(
    web3: Web3,
    collateral_address: str,
    collateral_reserve: str,
    collateral_amount: int,
    quote_address: str,
    quote_reserve: str,
    quote_amount: int,
    number_of_lenders=10,
    number_of_borrowers=10,
    deployment: AjnaDeployment | None = None,
) -> AjnaProtocol:
    """A pool with funded lenders and borrowers.

    - Each borrower gets ``collateral_amount`` of collateral
    - Each lender gets ``quote_amount`` of quote token
    - Everyone approves the pool for both tokens

    :param collateral_reserve:
        Account funding the borrowers

    :param quote_reserve:
        Account funding the lenders
    """
    protocol_definition = (
        InitialProtocolStateBuilder()
        .add_token(collateral_address, collateral_reserve)
        .add_token(quote_address, quote_reserve)
        .deploy_pool(collateral_address, quote_address)
    )

    (
        protocol_definition.with_borrowers(number_of_borrowers)
        .with_token(collateral_address, collateral_amount, approve_max=True)
        .with_token(quote_address, 0, approve_max=True)
        .add()
    )

    (
        protocol_definition.with_lenders(number_of_lenders)
        .with_token(quote_address, quote_amount, approve_max=True)
        .add()
    )

    sdk = AjnaProtocol(web3, deployment)
    sdk.get_runner().prepare_protocol_to_state_by_definition(protocol_definition.build())
    return sdk


def create_sdk_for_mkr_dai_pool(web3: Web3, number_of_lenders=10, number_of_borrowers=10) -> AjnaProtocol:
    """MKR/DAI pool. Lenders get 10,000 DAI, borrowers 10 MKR."""
    return create_sdk(
        web3,
        MKR_ADDRESS,
        MKR_RESERVE_ADDRESS,
        10 * 10**18,
        DAI_ADDRESS,
        DAI_RESERVE_ADDRESS,
        10_000 * 10**18,
        number_of_lenders,
        number_of_borrowers,
    )


def create_sdk_for_dai_usdt_pool(web3: Web3, number_of_lenders=10, number_of_borrowers=10) -> AjnaProtocol:
    """DAI/USDT pool. Lenders get 10,000 USDT, borrowers 10,000 DAI."""
    return create_sdk(
        web3,
        DAI_ADDRESS,
        DAI_RESERVE_ADDRESS,
        10_000 * 10**18,
        USDT_ADDRESS,
        USDT_RESERVE_ADDRESS,
        10_000 * 10**6,
        number_of_lenders,
        number_of_borrowers,
    )


def create_sdk_for_comp_dai_pool(web3: Web3, number_of_lenders=10, number_of_borrowers=10) -> AjnaProtocol:
    """COMP/DAI pool. Lenders get 10,000 DAI, borrowers 10,000 COMP."""
    return create_sdk(
        web3,
        COMP_ADDRESS,
        COMP_RESERVE_ADDRESS,
        10_000 * 10**18,
        DAI_ADDRESS,
        DAI_RESERVE_ADDRESS,
        10_000 * 10**18,
        number_of_lenders,
        number_of_borrowers,
    )
