"""Process, port and logging helpers for running Anvil forks."""

import logging
import os
import random
import socket
import time
from typing import Optional

import coloredlogs
import psutil

logger = logging.getLogger(__name__)


#: Libraries that log every JSON-RPC request on info level
NOISY_LOGGERS = [
    "web3.providers.HTTPProvider",
    "web3.RequestManager",
    "web3.manager.RequestManager",
    "urllib3.connectionpool",
]


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Does a node, or anything else, accept TCP connections on ``port``."""
    try:
        with socket.create_connection((host, port), timeout=1.0):
            return True
    except OSError:
        return False


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Choose an Anvil port nobody listens on.

    Candidates are sampled without repeats, so a small range
    never tries the same port twice.

    .. note ::

        Another process may still grab the port before Anvil binds it.

    :param max_attempt:
        Give up after this many busy ports

    :raise RuntimeError:
        All sampled ports were taken
    """
    assert min_port < max_port, f"Empty port range {min_port} - {max_port}"

    candidates = random.sample(range(min_port, max_port), k=min(max_attempt, max_port - min_port))
    for port in candidates:
        if is_localhost_port_listening(port, "127.0.0.1"):
            logger.debug("Port %d is busy", port)
            continue
        logger.info("Anvil gets port %d", port)
        return port

    raise RuntimeError(f"No free port in range {min_port} - {max_port} after {len(candidates)} attempts")


def _drain(stream, name: str, log_level: Optional[int]) -> bytes:
    output = b""
    for line in stream.readlines():
        output += line
        if log_level is not None:
            logger.log(log_level, "%s: %s", name, line.decode("utf-8").strip())
    return output


def stop_process(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    wait_port: Optional[int] = None,
    timeout=30,
) -> tuple[bytes, bytes]:
    """SIGKILL a node process and collect its output.

    :param log_level:
        If set, write the process stdout and stderr to logging on this level

    :param wait_port:
        Block until this localhost port is released

    :param timeout:
        Seconds to wait for the port

    :return:
        stdout, stderr as bytes
    """

    if process.poll() is None:
        # Still alive, we need to kill to read the output
        process.kill()

    stdout = _drain(process.stdout, "stdout", log_level)
    stderr = _drain(process.stderr, "stderr", log_level)

    if wait_port is not None:
        deadline = time.time() + timeout
        while is_localhost_port_listening(wait_port):
            if time.time() > deadline:
                raise AssertionError(f"Could not terminate the process in {timeout} seconds, stdout is {len(stdout)} bytes, stderr is {len(stderr)} bytes")
            time.sleep(0.1)

    return stdout, stderr


def setup_console_logging(default_log_level="warning", simplified_logging=False) -> logging.Logger:
    """Coloured console logs for scripts and fuzzing runs.

    - Level comes from ``LOG_LEVEL`` environment variable

    - JSON-RPC request logging of web3 and urllib3 is muted

    :param simplified_logging:
        Only print messages, no timestamps or logger names.
        Good for gas reports.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    fmt = "%(message)s" if simplified_logging else "%(asctime)s %(name)-30s %(message)s"
    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt="%H:%M:%S")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger()
