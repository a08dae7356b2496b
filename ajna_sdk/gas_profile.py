"""Transaction gas profiling.

Every transaction sent through :py:func:`ajna_sdk.tx.send_transaction` is recorded
into a gas profile attached to the web3 connection. The profile is keyed by
``"<ContractName>.<function>"`` and holds min/max/running average statistics.

:py:class:`GasWatcher` isolates the gas usage of a code block:

.. code-block:: python

    with GasWatcher(web3, method_names=["addQuoteToken", "drawDebt"]):
        pool.add_quote_token(lender, 10_000 * 10**18, 2500)
        pool.draw_debt(borrower, 1_000 * 10**18, 7000, 100 * 10**18)

When the block exits the watcher prints a report of the transactions done inside the block,
then merges the statistics recorded before the block back into the profile.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Iterable, TypeAlias

from humanfriendly.terminal import ansi_wrap
from web3 import Web3

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GasUsage:
    """Gas statistics of a single contract method."""

    #: Most gas a transaction used
    high: int = 0

    #: Least gas a transaction used
    low: int = 0

    #: Average over all transactions, including reverted ones
    avg: int = 0

    #: Average over successful transactions
    avg_success: int = 0

    #: Number of transactions
    count: int = 0

    #: Number of successful transactions
    count_success: int = 0


#: Method key -> statistics.
#:
#: Method key is ``"<ContractName>.<function>"``.
GasProfile: TypeAlias = dict[str, GasUsage]


def get_or_create_gas_profile(web3: Web3) -> GasProfile:
    """Get the gas profile associated with a Web3 connection.

    - Assumes one web3 instance per test session

    :return:
        The live profile. Mutated by every recorded transaction.
    """
    if not hasattr(web3, "gas_profile"):
        web3.gas_profile = {}

    return web3.gas_profile


def combined_mean(count_a: int, mean_a: int, count_b: int, mean_b: int) -> int:
    """Weighted integer mean of two means.

    :return:
        ``(count_a * mean_a + count_b * mean_b) // (count_a + count_b)``,
        or 0 if there is nothing to average
    """
    total = count_a + count_b
    if total == 0:
        return 0
    return (count_a * mean_a + count_b * mean_b) // total


def record_gas_usage(profile: GasProfile, method: str, gas_used: int, success: bool) -> GasUsage:
    """Add one transaction to a gas profile.

    :param method:
        ``"<ContractName>.<function>"``

    :param gas_used:
        From the transaction receipt

    :param success:
        Did the transaction revert

    :return:
        The updated entry
    """
    assert type(gas_used) == int, f"Got {type(gas_used)}"

    entry = profile.get(method)
    if entry is None:
        entry = profile[method] = GasUsage(high=gas_used, low=gas_used)

    entry.high = max(entry.high, gas_used)
    entry.low = min(entry.low, gas_used)
    entry.avg = combined_mean(entry.count, entry.avg, 1, gas_used)
    entry.count += 1

    if success:
        entry.avg_success = combined_mean(entry.count_success, entry.avg_success, 1, gas_used)
        entry.count_success += 1

    return entry


def merge_gas_usage(a: GasUsage, b: GasUsage) -> GasUsage:
    """Combine statistics of the same method recorded in two windows."""
    return GasUsage(
        high=max(a.high, b.high),
        low=min(a.low, b.low),
        avg=combined_mean(a.count, a.avg, b.count, b.avg),
        avg_success=combined_mean(a.count_success, a.avg_success, b.count_success, b.avg_success),
        count=a.count + b.count,
        count_success=a.count_success + b.count_success,
    )


def merge_gas_profiles(old: GasProfile, new: GasProfile) -> GasProfile:
    """Merge two gas profiles.

    - Methods found only in one of the profiles pass through as is

    - Methods found in both are combined with :py:func:`merge_gas_usage`

    Neither input is modified.

    :return:
        A new profile
    """
    overlap = {method: merge_gas_usage(old[method], new[method]) for method in old.keys() & new.keys()}
    return {
        **{method: replace(usage) for method, usage in old.items()},
        **{method: replace(usage) for method, usage in new.items()},
        **overlap,
    }


def filter_gas_profile(profile: GasProfile, method_names: Iterable[str] | None) -> GasProfile:
    """Keep methods whose function name contains any of the given substrings.

    :param method_names:
        Allow-list of substrings. ``None`` keeps everything.
    """
    if method_names is None:
        return dict(profile)

    method_names = list(method_names)
    filtered = {}
    for method, usage in profile.items():
        _, _, function = method.partition(".")
        if any(name in function for name in method_names):
            filtered[method] = usage
    return filtered


def format_gas_profile(profile: GasProfile, color=False) -> list[str]:
    """Format a gas profile as a tree of contracts and their functions.

    Example output::

        ERC20Pool <Contract>
           ├─ drawDebt      -  avg: 310944  avg (confirmed): 310944  low: 298221  high: 323668  tx count: 2
           └─ addQuoteToken -  avg: 133478  avg (confirmed): 133478  low: 133478  high: 133478  tx count: 1

    Contracts and functions are sorted by average gas, highest first.

    :param color:
        Highlight contract names with ANSI colours
    """

    by_contract: dict[str, list[tuple[str, GasUsage]]] = {}
    for method, usage in sorted(profile.items(), key=lambda item: item[1].avg, reverse=True):
        contract, _, function = method.partition(".")
        by_contract.setdefault(contract, []).append((function, usage))

    columns = {
        "avg": lambda u: u.avg,
        "avg (confirmed)": lambda u: u.avg_success,
        "low": lambda u: u.low,
        "high": lambda u: u.high,
        "tx count": lambda u: u.count,
    }

    fn_padding = max((len(fn) for functions in by_contract.values() for fn, _ in functions), default=0)
    padding = {name: max((len(str(getter(u))) for u in profile.values()), default=0) for name, getter in columns.items()}

    lines = []
    for contract, functions in by_contract.items():
        name = ansi_wrap(contract, color="magenta", bright=True) if color else contract
        lines.append(f"{name} <Contract>")
        for idx, (function, usage) in enumerate(functions):
            prefix = "└─" if idx == len(functions) - 1 else "├─"
            values = "  ".join(f"{column}: {str(getter(usage)).rjust(padding[column])}" for column, getter in columns.items())
            lines.append(f"   {prefix} {function.ljust(fn_padding)} -  {values}")

    return lines


def get_usage(gas: int, gas_price_gwei: float = 50.0, eth_price_usd: float = 1700.0) -> str:
    """Estimate what a gas amount costs.

    :return:
        Human readable cost in ETH and USD
    """
    eth = gas * gas_price_gwei * 1e-9
    return f"{gas:,} gas = {eth:.6f} ETH = ${eth * eth_price_usd:,.2f} at {gas_price_gwei} gwei"


class GasWatcher:
    """Report gas used by the transactions of a code block.

    - On enter, the current profile is moved aside to the watcher's cache and the live profile is cleared

    - On exit, a report of the block's transactions is written out and the cached
      statistics are merged back, so nothing recorded before the block is lost

    Each watcher keeps its own cache, so watchers can be nested.
    """

    def __init__(
        self,
        web3: Web3,
        method_names: Iterable[str] | None = None,
        output: Callable[[str], None] = print,
        color=False,
    ):
        """
        :param web3:
            Connection whose gas profile we watch

        :param method_names:
            Only report functions whose name contains one of these substrings

        :param output:
            Where report lines go. ``print`` by default.

        :param color:
            ANSI colours in the report
        """
        self.web3 = web3
        self.method_names = list(method_names) if method_names is not None else None
        self.output = output
        self.color = color

        #: Report of the last finished block
        self.report_lines: list[str] = []

        #: Statistics collected before this watcher was entered
        self._cache: GasProfile = {}

    def __enter__(self) -> "GasWatcher":
        self._start_profiling()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            profile = get_or_create_gas_profile(self.web3)
            self.report_lines = format_gas_profile(filter_gas_profile(profile, self.method_names), color=self.color)
            for line in self.report_lines:
                self.output(line)
        finally:
            self._end_profiling()

    def _start_profiling(self):
        profile = get_or_create_gas_profile(self.web3)
        self._cache = dict(profile)
        profile.clear()

    def _end_profiling(self):
        profile = get_or_create_gas_profile(self.web3)
        merged = merge_gas_profiles(self._cache, profile)
        profile.clear()
        profile.update(merged)
        self._cache = {}
        logger.debug("Gas profile restored, %d methods", len(profile))
