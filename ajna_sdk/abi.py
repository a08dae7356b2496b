"""Bundled Ajna and ERC-20 ABIs.

We ship only the subset of the interfaces the SDK calls, under ``ajna_sdk/abi``:

- ``ERC20.json``, with DAI ``mint``
- ``ajna/ERC20PoolFactory.json``
- ``ajna/ERC20Pool.json``
- ``ajna/PoolInfoUtils.json``

Loading is cached, as pools and tokens are bound many times in a fuzzing run.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Type

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from ajna_sdk.tx import get_registered_contract, register_contract

#: The factory returns this for pools it has not deployed
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

ABI_FOLDER = Path(__file__).resolve().parent / "abi"


@lru_cache(maxsize=32)
def get_abi_by_filename(fname: str) -> list:
    """Read a bundled ABI.

    :param fname:
        Path relative to ``ajna_sdk/abi``, like ``"ajna/ERC20Pool.json"``

    :return:
        ABI entries
    """
    with open(ABI_FOLDER / fname, "rt", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=128)
def get_contract(web3: Web3, fname: str) -> Type[Contract]:
    """Contract class for a bundled ABI.

    The web3 connection is part of the cache key.
    """
    return web3.eth.contract(abi=get_abi_by_filename(fname))


def get_deployed_contract(
    web3: Web3,
    fname: str,
    address: HexAddress | str,
    name: str | None = None,
) -> Contract:
    """Bind a bundled ABI to a deployed contract.

    The instance is registered in the contract registry of the connection,
    so its transactions show as ``ERC20Pool.drawDebt`` in gas reports.

    Example:

    .. code-block:: python

        pool = get_deployed_contract(web3, "ajna/ERC20Pool.json", pool_address)

    :param name:
        Name in gas reports. Defaults to the ABI file name, like ``ERC20Pool``.
    """
    assert address, "get_deployed_contract() address was None"

    address = Web3.to_checksum_address(address)
    contract = get_contract(web3, fname)(address)
    contract.name = name or Path(fname).stem

    if get_registered_contract(web3, address) is None:
        register_contract(web3, address, contract)

    return contract
