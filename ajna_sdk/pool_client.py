"""Ajna ERC-20 pool client.

Two levels of API:

- Address based operations, like :py:meth:`AjnaPoolClient.add_quote_token`,
  used by the fuzzing state machines

- Actor index based operations, like :py:meth:`AjnaPoolClient.deposit_quote_token`,
  working with :py:attr:`ajna_sdk.protocol.AjnaProtocol.lenders` and
  :py:attr:`ajna_sdk.protocol.AjnaProtocol.borrowers`
"""

import logging
from typing import TYPE_CHECKING, Optional

from eth_typing import HexAddress
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.types import TxReceipt

from ajna_sdk.abi import ZERO_ADDRESS
from ajna_sdk.constants import MAX_FENWICK_INDEX, MAX_UINT256
from ajna_sdk.pool_info import PoolHelper
from ajna_sdk.token_client import ERC20TokenClient
from ajna_sdk.tx import TransactionReverted, send_transaction

if TYPE_CHECKING:
    from ajna_sdk.protocol import AjnaProtocol

logger = logging.getLogger(__name__)


class PoolOperationFailed(Exception):
    """Pool transaction reverted."""

    def __init__(self, msg: str, revert_reason: str):
        super().__init__(msg)
        self.revert_reason = revert_reason


class AjnaPoolClient:
    """Transact with one ERC-20 pool."""

    def __init__(self, protocol: "AjnaProtocol", pool_contract: Contract):
        self._protocol = protocol
        self.pool_contract = pool_contract
        self._helper: PoolHelper | None = None

    def __repr__(self):
        return f"<AjnaPoolClient {self.pool_contract.address}>"

    @property
    def address(self) -> HexAddress:
        return self.pool_contract.address

    def get_contract(self) -> Contract:
        return self.pool_contract

    def get_helper(self) -> PoolHelper:
        """Views over this pool."""
        if self._helper is None:
            self._helper = PoolHelper(self._protocol.web3, self.pool_contract, self._protocol.deployment.pool_info_utils)
        return self._helper

    def get_collateral_token(self) -> ERC20TokenClient:
        """Collateral token client. The token must be registered in the protocol."""
        return self._protocol.get_token(self.pool_contract.functions.collateralAddress().call())

    def get_quote_token(self) -> ERC20TokenClient:
        """Quote token client. The token must be registered in the protocol."""
        return self._protocol.get_token(self.pool_contract.functions.quoteTokenAddress().call())

    def _get_expiry(self) -> int:
        latest = self._protocol.web3.eth.get_block("latest")
        return latest["timestamp"] + self._protocol.config.deposit_expiry_seconds

    def _send(self, func: ContractFunction, sender: HexAddress | str, failure_message: str) -> TxReceipt:
        try:
            return send_transaction(self._protocol.web3, func, sender)
        except TransactionReverted as e:
            raise PoolOperationFailed(f"{failure_message}. Revert message: {e.revert_reason}", e.revert_reason) from e

    #
    # Address based operations
    #

    def add_quote_token(self, lender: HexAddress | str, amount: int, index: int, expiry: int | None = None) -> TxReceipt:
        """Deposit quote token to a bucket."""
        if expiry is None:
            expiry = self._get_expiry()
        return self._send(
            self.pool_contract.functions.addQuoteToken(amount, index, expiry),
            lender,
            f"Failed to deposit quote token to pool {self.address}",
        )

    def remove_quote_token(self, lender: HexAddress | str, max_amount: int, index: int) -> TxReceipt:
        return self._send(
            self.pool_contract.functions.removeQuoteToken(max_amount, index),
            lender,
            f"Failed to remove quote token from pool {self.address}",
        )

    def add_collateral(self, actor: HexAddress | str, amount: int, index: int, expiry: int | None = None) -> TxReceipt:
        """Deposit collateral to a bucket, swapping it for quote token LP."""
        if expiry is None:
            expiry = self._get_expiry()
        return self._send(
            self.pool_contract.functions.addCollateral(amount, index, expiry),
            actor,
            f"Failed to add collateral to bucket {index} of pool {self.address}",
        )

    def remove_collateral(self, actor: HexAddress | str, max_amount: int, index: int) -> TxReceipt:
        return self._send(
            self.pool_contract.functions.removeCollateral(max_amount, index),
            actor,
            f"Failed to remove collateral from bucket {index} of pool {self.address}",
        )

    def draw_debt(self, borrower: HexAddress | str, amount: int, limit_index: int, collateral_to_pledge: int) -> TxReceipt:
        """Pledge collateral and borrow in one transaction.

        Either amount can be zero.

        :param limit_index:
            Revert if LUP would move below this bucket
        """
        return self._send(
            self.pool_contract.functions.drawDebt(borrower, amount, limit_index, collateral_to_pledge),
            borrower,
            f"Failed to draw debt from pool {self.address}",
        )

    def repay_debt(
        self,
        borrower: HexAddress | str,
        max_quote_amount: int,
        collateral_to_pull: int,
        limit_index: int = MAX_FENWICK_INDEX,
        receiver: HexAddress | str | None = None,
    ) -> TxReceipt:
        """Repay debt and pull collateral in one transaction.

        :param receiver:
            Who gets the pulled collateral. Defaults to the borrower.
        """
        return self._send(
            self.pool_contract.functions.repayDebt(borrower, max_quote_amount, collateral_to_pull, receiver or borrower, limit_index),
            borrower,
            f"Failed to repay debt to pool {self.address}",
        )

    def kick(self, kicker: HexAddress | str, borrower: HexAddress | str, np_limit_index: int = MAX_FENWICK_INDEX) -> TxReceipt:
        """Start a liquidation auction for an undercollateralized loan."""
        return self._send(
            self.pool_contract.functions.kick(borrower, np_limit_index),
            kicker,
            f"Failed to kick borrower {borrower} in pool {self.address}",
        )

    def take(
        self,
        taker: HexAddress | str,
        borrower: HexAddress | str,
        max_amount: int,
        callee: HexAddress | str | None = None,
        data: bytes = b"",
    ) -> TxReceipt:
        """Buy collateral from a liquidation auction.

        :param callee:
            Collateral receiver. Defaults to the taker.
        """
        return self._send(
            self.pool_contract.functions.take(borrower, max_amount, callee or taker, data),
            taker,
            f"Failed to take auction of {borrower} in pool {self.address}",
        )

    def withdraw_bonds(self, kicker: HexAddress | str, recipient: HexAddress | str | None = None, max_amount: int = MAX_UINT256) -> TxReceipt:
        """Claim kicker bonds released by settled auctions."""
        return self._send(
            self.pool_contract.functions.withdrawBonds(recipient or kicker, max_amount),
            kicker,
            f"Failed to withdraw bonds from pool {self.address}",
        )

    #
    # Actor index based operations
    #

    def _run(self, operation, ensure_passes: bool) -> Optional[TxReceipt]:
        try:
            return operation()
        except PoolOperationFailed as e:
            if ensure_passes:
                raise
            logger.info("%s", e)
            return None

    def deposit_quote_token(
        self,
        amount: int,
        price_index: int,
        lender_index: int,
        ensure_approval=False,
        ensure_passes=True,
    ) -> Optional[TxReceipt]:
        """Deposit quote token as a lender of the protocol.

        :param price_index:
            Bucket index

        :param ensure_approval:
            Approve the amount before depositing

        :param ensure_passes:
            Raise if the transaction fails. Otherwise log and return ``None``.
        """
        lender = self._protocol.get_lender(lender_index)
        if ensure_approval:
            self.get_quote_token().approve(self.address, amount, lender)
        return self._run(lambda: self.add_quote_token(lender, amount, price_index), ensure_passes)

    def withdraw_quote_token(self, max_amount: int, price_index: int, lender_index: int, ensure_passes=True) -> Optional[TxReceipt]:
        lender = self._protocol.get_lender(lender_index)
        return self._run(lambda: self.remove_quote_token(lender, max_amount, price_index), ensure_passes)

    def deposit_collateral(self, amount: int, borrower_index: int, ensure_approval=False, ensure_passes=True) -> Optional[TxReceipt]:
        """Pledge collateral as a borrower of the protocol, without borrowing."""
        borrower = self._protocol.get_borrower(borrower_index)
        if ensure_approval:
            self.get_collateral_token().approve(self.address, amount, borrower)
        return self._run(lambda: self.draw_debt(borrower, 0, MAX_FENWICK_INDEX, amount), ensure_passes)

    def withdraw_collateral(self, amount: int, borrower_index: int, ensure_passes=True) -> Optional[TxReceipt]:
        """Pull pledged collateral, without repaying."""
        borrower = self._protocol.get_borrower(borrower_index)
        return self._run(lambda: self.repay_debt(borrower, 0, amount), ensure_passes)

    def borrow(self, amount: int, borrower_index: int, limit_index: int = MAX_FENWICK_INDEX, ensure_passes=True) -> Optional[TxReceipt]:
        """Borrow against already pledged collateral."""
        borrower = self._protocol.get_borrower(borrower_index)
        return self._run(lambda: self.draw_debt(borrower, amount, limit_index, 0), ensure_passes)

    def repay(self, amount: int, borrower_index: int, ensure_approval=False, ensure_passes=True) -> Optional[TxReceipt]:
        borrower = self._protocol.get_borrower(borrower_index)
        if ensure_approval:
            self.get_quote_token().approve(self.address, amount, borrower)
        return self._run(lambda: self.repay_debt(borrower, amount, 0), ensure_passes)


def is_deployed_pool_address(address: str) -> bool:
    """Factory returns the zero address for pools it has not deployed."""
    return address is not None and address.lower() != ZERO_ADDRESS
