"""ERC-20 token clients funding test actors from a reserve account.

On a mainnet fork, each token is paired with a reserve: a large holder we
impersonate. :py:meth:`ERC20TokenClient.top_up` moves tokens from the reserve
to a test actor.
"""

import logging

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract
from web3.types import TxReceipt

from ajna_sdk.abi import get_deployed_contract
from ajna_sdk.constants import DAI_ADDRESS, KNOWN_TOKEN_SYMBOLS, MAX_UINT256
from ajna_sdk.tx import TransactionReverted, send_transaction

logger = logging.getLogger(__name__)


class InsufficientReserveBalance(Exception):
    """The reserve account cannot fund a top up."""

    def __init__(self, msg: str, reserve_balance: int, amount: int):
        super().__init__(msg)
        self.reserve_balance = reserve_balance
        self.amount = amount


class TokenOperationFailed(Exception):
    """Token transfer or approval reverted."""


class ERC20TokenClient:
    """ERC-20 token with a reserve account to top up test actors from.

    The reserve must be able to transact, see :py:func:`ajna_sdk.anvil.unlock_account`.
    """

    def __init__(self, web3: Web3, token_address: HexAddress | str, reserve_address: HexAddress | str):
        """
        :param token_address:
            ERC-20 contract

        :param reserve_address:
            Account holding a large balance of the token
        """
        self.web3 = web3
        self.token_address = Web3.to_checksum_address(token_address)
        self.reserve_address = Web3.to_checksum_address(reserve_address)
        self._contract = get_deployed_contract(
            web3,
            "ERC20.json",
            self.token_address,
            name=KNOWN_TOKEN_SYMBOLS.get(self.token_address.lower(), "ERC20"),
        )

    def __repr__(self):
        return f"<{self.__class__.__name__} {self._contract.name} {self.token_address}>"

    def get_contract(self) -> Contract:
        return self._contract

    def balance(self, address: HexAddress | str) -> int:
        """Raw token balance."""
        return self._contract.functions.balanceOf(address).call()

    def top_up(self, to: HexAddress | str, amount: int) -> TxReceipt:
        """Send tokens from the reserve.

        :raise InsufficientReserveBalance:
            Reserve balance checked before sending the transaction
        """
        reserve_balance = self.balance(self.reserve_address)
        if reserve_balance < amount:
            raise InsufficientReserveBalance(
                f"Not enough funds to transfer {amount} tokens from reserve to {to}. Only {reserve_balance} tokens available in reserve.",
                reserve_balance=reserve_balance,
                amount=amount,
            )

        logger.info("Topping up %s with %d %s", to, amount, self._contract.name)
        return self._send(
            self._contract.functions.transfer(to, amount),
            self.reserve_address,
            f"Failed to top up {self.token_address} to {to}",
        )

    def transfer(self, from_address: HexAddress | str, to: HexAddress | str, amount: int) -> TxReceipt:
        return self._send(
            self._contract.functions.transfer(to, amount),
            from_address,
            f"Failed to transfer {amount} tokens from {from_address} to {to}",
        )

    def approve(self, spender: HexAddress | str, amount: int, owner: HexAddress | str) -> TxReceipt:
        return self._send(
            self._contract.functions.approve(spender, amount),
            owner,
            f"Failed to approve {amount} tokens to {spender}",
        )

    def approve_max(self, spender: HexAddress | str, owner: HexAddress | str) -> TxReceipt:
        """Give the spender unlimited allowance."""
        return self._send(
            self._contract.functions.approve(spender, MAX_UINT256),
            owner,
            "Failed to approve max amount",
        )

    def _send(self, func, sender: HexAddress | str, failure_message: str) -> TxReceipt:
        try:
            return send_transaction(self.web3, func, sender)
        except TransactionReverted as e:
            raise TokenOperationFailed(f"{failure_message}. Revert message: {e.revert_reason}") from e


class DaiTokenClient(ERC20TokenClient):
    """DAI is minted on demand.

    The reserve is DaiJoin, which is a ward of the DAI contract.
    """

    def top_up(self, to: HexAddress | str, amount: int) -> TxReceipt:
        logger.info("Minting %d DAI to %s", amount, to)
        return self._send(
            self._contract.functions.mint(to, amount),
            self.reserve_address,
            f"Failed to mint {amount} DAI to {to}",
        )


def create_token_client(web3: Web3, token_address: HexAddress | str, reserve_address: HexAddress | str) -> ERC20TokenClient:
    """Pick the right client class for a token."""
    if token_address.lower() == DAI_ADDRESS.lower():
        return DaiTokenClient(web3, token_address, reserve_address)
    return ERC20TokenClient(web3, token_address, reserve_address)
