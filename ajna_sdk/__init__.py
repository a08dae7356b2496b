"""ajna_sdk package root.

Python SDK and test harness for `Ajna <https://www.ajna.finance/>`__ lending pools.

- Describe an initial protocol state with :py:class:`ajna_sdk.protocol_definition.InitialProtocolStateBuilder`

- Bring a mainnet fork to that state with :py:class:`ajna_sdk.runner.AjnaProtocolRunner`

- Measure gas with :py:class:`ajna_sdk.gas_profile.GasWatcher`

- Fuzz pools with the state machines in :py:mod:`ajna_sdk.testing`
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"ajna-sdk needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
