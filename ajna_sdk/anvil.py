"""Anvil mainnet fork backend.

Ajna pools live on Ethereum mainnet. Tests fork mainnet with
`Anvil <https://book.getfoundry.sh/reference/anvil/>`__, impersonate
the token reserve accounts to fund test actors, and travel in time
to get loans under water.

To install Anvil:

.. code-block:: shell

    curl -L https://foundry.paradigm.xyz | bash
    foundryup

Example:

.. code-block:: python

    launch = launch_anvil(os.environ["JSON_RPC_ETHEREUM"])
    try:
        web3 = Web3(HTTPProvider(launch.json_rpc_url))
        ...
    finally:
        launch.close(log_level=logging.ERROR)
"""

import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass
from subprocess import DEVNULL, PIPE
from typing import Any, Iterable, Optional

import psutil
import requests
from eth_typing import HexAddress
from requests.exceptions import ConnectionError as RequestsConnectionError
from web3 import HTTPProvider, Web3

from ajna_sdk.utils import find_free_port, is_localhost_port_listening, stop_process

logger = logging.getLogger(__name__)


class RPCRequestError(Exception):
    """Anvil custom RPC method failed."""


def _build_command(cmd: str, port: int, fork_url: str | None, fork_block_number: int | None, hardfork: str | None, gas_limit: int | None) -> list[str]:
    cmd_list = cmd.split(" ") + ["--port", str(port)]
    if fork_url:
        cmd_list += ["--fork-url", fork_url]
    if fork_block_number:
        assert fork_url, f"fork_block_number {fork_block_number} given without a JSON-RPC URL to fork"
        cmd_list += ["--fork-block-number", str(fork_block_number)]
    if hardfork:
        cmd_list += ["--hardfork", hardfork]
    if gas_limit:
        cmd_list += ["--gas-limit", str(gas_limit)]
    return cmd_list


def _start(cmd_list: list[str]) -> psutil.Popen:
    # Windows does not give us readable pipes
    out = DEVNULL if sys.platform == "win32" else PIPE
    env = os.environ.copy()
    env["RUST_BACKTRACE"] = "1"
    logger.info("Launching anvil: %s", " ".join(_redact(cmd_list)))
    return psutil.Popen(cmd_list, stdin=DEVNULL, stdout=out, stderr=out, env=env)


def _redact(cmd_list: list[str]) -> list[str]:
    """Hide the API key of the forked JSON-RPC URL from logs."""
    redacted = list(cmd_list)
    if "--fork-url" in redacted:
        idx = redacted.index("--fork-url") + 1
        redacted[idx] = redacted[idx].split("?")[0].rsplit("/", 1)[0] + "/***"
    return redacted


def _wait_for_node(web3: Web3, timeout: float) -> Optional[int]:
    """Poll until the node answers.

    :return:
        The current block number, or ``None`` if the node did not come up in time
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            return web3.eth.block_number
        except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout):
            time.sleep(0.1)
    return None


def make_anvil_custom_rpc_request(web3: Web3, method: str, args: Optional[list] = None) -> Any:
    """Call an Anvil cheat code, like ``evm_snapshot`` or ``anvil_setBalance``.

    :raise RPCRequestError:
        The node is unreachable or answered with an error.
        The message starts with the method name.
    """
    try:
        response = web3.provider.make_request(method, tuple(args or ()))  # type: ignore
    except (AttributeError, RequestsConnectionError) as e:
        raise RPCRequestError(f"{method}: no connection to the node") from e

    if "result" not in response:
        error = response.get("error") or {}
        raise RPCRequestError(f"{method}: {error.get('message', response)}")

    return response["result"]


@dataclass
class AnvilLaunch:
    """A running Anvil fork."""

    #: Localhost port of the JSON-RPC
    port: int

    #: Command line that started the node, fork URL included
    cmd: list[str]

    #: Where Anvil listens to JSON-RPC
    json_rpc_url: str

    #: The node process
    process: psutil.Popen

    def close(self, log_level: Optional[int] = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Stop the node.

        :param log_level:
            Dump Anvil messages to logging

        :return:
            Anvil stdout, stderr
        """
        stdout, stderr = stop_process(
            self.process,
            log_level=log_level,
            wait_port=self.port if block else None,
            timeout=block_timeout,
        )
        logger.info("Anvil shutdown %s", self.json_rpc_url)
        return stdout, stderr


def launch_anvil(
    fork_url: Optional[str] = None,
    unlocked_addresses: Iterable[HexAddress | str] = (),
    cmd="anvil",
    port: int | tuple = (19999, 29999, 25),
    launch_wait_seconds=20.0,
    attempts=3,
    hardfork: str | None = "cancun",
    gas_limit: Optional[int] = None,
    fork_block_number: Optional[int] = None,
    test_request_timeout=3.0,
) -> AnvilLaunch:
    """Start Anvil as a mainnet fork, or as an empty chain.

    The process runs in the background until :py:meth:`AnvilLaunch.close`.

    :param fork_url:
        JSON-RPC URL of Ethereum mainnet.
        If not given, launch an empty test chain.

    :param unlocked_addresses:
        Accounts to impersonate right away, like token reserves

    :param port:
        Localhost port for the JSON-RPC.
        A tuple is (min port, max port, attempts) for a random free port.

    :param launch_wait_seconds:
        How long we wait for the node to answer

    :param attempts:
        Launches before giving up.
        A fork may fail silently when the upstream JSON-RPC throttles us.

    :param fork_block_number:
        Pin the fork to a block. Needs an archive node.
    """

    assert shutil.which(cmd.split(" ")[0]) is not None, f"{cmd} command not in PATH {os.environ.get('PATH')}"

    if type(port) == tuple:
        port = find_free_port(*port)
    else:
        assert not is_localhost_port_listening(port), f"localhost port {port} occupied.\nYou might have a zombie Anvil process around.\nRun to kill: kill -SIGKILL $(lsof -ti:{port})"

    url = f"http://localhost:{port}"
    cmd_list = _build_command(cmd, port, fork_url, fork_block_number, hardfork, gas_limit)
    web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": test_request_timeout}))

    for attempt in range(1, attempts + 1):
        process = _start(cmd_list)
        current_block = _wait_for_node(web3, launch_wait_seconds)
        if current_block is not None:
            break

        logger.error("Anvil at %s did not answer within %f seconds, attempt %d/%d", url, launch_wait_seconds, attempt, attempts)
        stdout, stderr = stop_process(process, log_level=logging.ERROR, wait_port=port)

        # Anvil wrote something, so it is a real failure and not throttling
        if len(stdout) > 0 or attempt == attempts:
            raise AssertionError(f"Could not read block number from Anvil after the launch with command '{cmd}': at {url}, stdout is {len(stdout)} bytes, stderr is {len(stderr)} bytes")

    logger.info("Anvil chain %d at block %s, JSON-RPC %s", web3.eth.chain_id, f"{current_block:,}", url)

    for address in unlocked_addresses:
        unlock_account(web3, address)

    return AnvilLaunch(port, cmd_list, url, process)


def unlock_account(web3: Web3, address: str):
    """Transact as an account without its private key."""
    make_anvil_custom_rpc_request(web3, "anvil_impersonateAccount", [address])


def set_balance(web3: Web3, address: str, raw_amount: int):
    """Give an account ETH for gas.

    :param raw_amount:
        ETH balance in wei
    """
    assert type(raw_amount) == int
    make_anvil_custom_rpc_request(web3, "anvil_setBalance", [address, hex(raw_amount)])


def sleep(web3: Web3, seconds: int) -> int:
    """Move the chain clock forward.

    The jump shows in the timestamp of the next mined block.
    """
    make_anvil_custom_rpc_request(web3, "evm_increaseTime", [hex(seconds)])
    return seconds


def mine(web3: Web3, blocks: int = 1):
    for _ in range(blocks):
        make_anvil_custom_rpc_request(web3, "evm_mine")


def snapshot(web3: Web3) -> int:
    """Take a snapshot to revert to.

    :return:
        Snapshot id
    """
    return int(make_anvil_custom_rpc_request(web3, "evm_snapshot", []), 16)


def revert(web3: Web3, snapshot_id: int) -> bool:
    """Roll the chain back to a snapshot.

    A snapshot can be reverted to only once.

    :return:
        True if a snapshot was reverted
    """
    return make_anvil_custom_rpc_request(web3, "evm_revert", [snapshot_id])


def is_anvil(web3: Web3) -> bool:
    """Are we connected to an Anvil node."""
    # 'anvil/v0.2.0'
    return "anvil/" in web3.client_version


class AnvilChain:
    """Chain clock of the pool state machines.

    Interest accrues and auctions progress with block time,
    so fuzzing runs jump the clock forward between pool operations.
    """

    def __init__(self, web3: Web3):
        self.web3 = web3

    def time(self) -> int:
        """Timestamp of the latest block."""
        return self.web3.eth.get_block("latest")["timestamp"]

    def sleep(self, seconds: int):
        sleep(self.web3, seconds)

    def mine(self, blocks: int = 1):
        mine(self.web3, blocks)

    def snapshot(self) -> int:
        return snapshot(self.web3)

    def revert(self, snapshot_id: int) -> bool:
        return revert(self.web3, snapshot_id)
