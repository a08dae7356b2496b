"""Transaction sending with revert reasons and gas accounting.

- Contract instances are kept in a registry attached to the web3 connection,
  so that transactions can be named ``"<ContractName>.<function>"``

- :py:func:`send_transaction` records every mined transaction in the gas profile,
  see :py:mod:`ajna_sdk.gas_profile`

- Reverts become :py:class:`TransactionReverted` with the Solidity revert reason
"""

import logging
from typing import TypeAlias, Union

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.datastructures import AttributeDict
from web3.exceptions import ContractLogicError, Web3RPCError
from web3.types import TxReceipt

from ajna_sdk.gas_profile import get_or_create_gas_profile, record_gas_usage

logger = logging.getLogger(__name__)


#: Lower case address -> Contract mapping.
ContractRegistry: TypeAlias = dict[str, Contract]


class TransactionReverted(Exception):
    """A transaction reverted, either in gas estimation or on chain."""

    def __init__(self, msg: str, revert_reason: str, tx_hash: HexBytes | None = None):
        super().__init__(msg)
        self.revert_reason = revert_reason
        self.tx_hash = tx_hash

    def get_solidity_reason_message(self) -> str:
        return self.revert_reason


def get_or_create_contract_registry(web3: Web3) -> ContractRegistry:
    """Contracts bound on this connection, for naming transactions.

    - Each test or fuzzing run creates its own web3 instance

    :return:
        Mapping of address -> contract instance
    """
    if not hasattr(web3, "contract_registry"):
        web3.contract_registry = {}

    return web3.contract_registry


def register_contract(web3: Web3, address: HexAddress | str, instance: Contract):
    """Register a contract for symbolic transaction names."""
    assert type(address) == str, f"address is {type(address)}, expected str"
    registry = get_or_create_contract_registry(web3)
    registry[address.lower()] = instance


def get_registered_contract(web3: Web3, address: HexAddress | str) -> Contract | None:
    """Resolve a contract instance by its address.

    :return:
        The registered instance or ``None``
    """
    registry = get_or_create_contract_registry(web3)
    return registry.get(address.lower())


def get_method_name(web3: Web3, func: ContractFunction) -> str:
    """Symbolic name of a contract call, ``"ERC20Pool.drawDebt"``.

    Unregistered contracts are named by their address.
    """
    contract = get_registered_contract(web3, func.address)
    contract_name = getattr(contract, "name", None) if contract is not None else None
    return f"{contract_name or func.address}.{func.fn_name}"


def get_transaction_data_field(tx: AttributeDict) -> str:
    """Calldata of a mined transaction.

    Ethereum Tester has this in tx.data while Anvil and geth have it in tx.input.
    """
    if "data" in tx:
        return tx["data"]
    return tx["input"]


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    unknown_error_message="<could not extract the revert reason>",
) -> str:
    """Find out why a mined transaction reverted.

    Nodes do not store the failure reason, so we replay the transaction
    with ``eth_call`` against the state before its block.

    :param tx_hash:
        Reverted transaction

    :param unknown_error_message:
        Returned if the replay did not revert

    :return:
        The revert reason or the placeholder message
    """
    tx = web3.eth.get_transaction(tx_hash)

    replay_tx = {
        "to": tx["to"],
        "from": tx["from"],
        "value": tx["value"],
        "data": get_transaction_data_field(tx),
        "gas": tx["gas"],
    }

    try:
        web3.eth.call(replay_tx, tx["blockNumber"] - 1)
    except ContractLogicError as e:
        return e.args[0]
    except Web3RPCError as e:
        logger.debug("Revert replay RPC error: %s", e)
        return str(e)

    logger.warning("Transaction %s reverted, but its replay succeeded", HexBytes(tx_hash).hex())
    return unknown_error_message


def send_transaction(
    web3: Web3,
    func: ContractFunction,
    sender: HexAddress | str,
    gas: int | None = None,
) -> TxReceipt:
    """Transact a contract function and wait for the receipt.

    - The sender must be unlocked on the node, see :py:func:`ajna_sdk.anvil.unlock_account`

    - Gas used of every mined transaction, reverted or not, is recorded
      in the connection's gas profile

    - A call that reverts in gas estimation never reaches the chain.
      It has no gas used and is not profiled, only logged.

    Example:

    .. code-block:: python

        receipt = send_transaction(web3, dai.functions.approve(pool.address, amount), lender)

    :param func:
        Bound contract function

    :param sender:
        Address we transact as

    :param gas:
        Gas limit. If not given, estimate.

    :return:
        Successful transaction receipt

    :raise TransactionReverted:
        The transaction failed in the gas estimation or on chain
    """
    method = get_method_name(web3, func)

    tx_params = {"from": sender}
    if gas is not None:
        tx_params["gas"] = gas

    try:
        tx_hash = func.transact(tx_params)
    except ContractLogicError as e:
        reason = e.args[0]
        logger.info("%s from %s did not pass gas estimation, not profiled: %s", method, sender, reason)
        raise TransactionReverted(f"{method} reverted: {reason}", reason) from e

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    success = receipt["status"] == 1
    record_gas_usage(get_or_create_gas_profile(web3), method, receipt["gasUsed"], success)

    if not success:
        reason = fetch_transaction_revert_reason(web3, tx_hash)
        logger.debug("%s from %s reverted on chain: %s", method, sender, reason)
        raise TransactionReverted(f"{method} reverted: {reason}", reason, tx_hash=HexBytes(tx_hash))

    logger.info("%s from %s, gas used %d", method, sender, receipt["gasUsed"])
    return receipt
