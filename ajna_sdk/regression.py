"""Turn a failed forge invariant run into a Solidity regression test.

Forge prints the call sequence of a failing invariant run as lines like::

    sender=0x... addr=[src/invariants/BasicPoolHandler.sol:BasicPoolHandler]0x... calldata=addQuoteToken(uint256,uint256,uint256), args=[1000 [1e3], 2, 3]

Save the sequence to ``trace.log`` and run::

    ajna-regression-test trace.log

to get a test function replaying the same calls against the handler.
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

#: Human readable value hints forge adds after numbers, like ``1000 [1e3]``
_VALUE_HINT = re.compile(r"\s\(\d.*?\)")


class TraceParseError(Exception):
    """The trace has no handler calls."""


def get_handler_variable(line: str) -> str:
    """Solidity variable name of the handler contract, ``BasicPoolHandler`` -> ``_basicPoolHandler``."""
    full_handler = line.split("addr=[")[1].split("]")[0].split(":")[1]
    return "_" + full_handler[:1].lower() + full_handler[1:]


def format_call(line: str) -> str:
    """Solidity statement calling the handler function of a trace line, without the handler."""
    function_name = line.split("calldata=")[1].split("(")[0]
    args = line.split("args=")[1].replace("[", "(").replace("]", ")")
    args = _VALUE_HINT.sub("", args)
    return "".join((function_name + args + ";").splitlines())


def generate_regression_test(trace_lines: Iterable[str], test_name="test_regression_failure") -> str:
    """Solidity test function replaying a forge invariant failure.

    Lines that are not handler calls are skipped.

    :param trace_lines:
        Lines of a forge ``trace.log``

    :raise TraceParseError:
        No handler calls in the trace
    """
    calls = [line for line in trace_lines if "calldata=" in line and "args=" in line]
    if not calls:
        raise TraceParseError("No handler calls found in the trace")

    handler = get_handler_variable(calls[0])
    logger.info("Generating %s with %d calls to %s", test_name, len(calls), handler)

    output = [f"function {test_name}() external {{"]
    for line in calls:
        output.append(f"    {handler}.{format_call(line)}")
    output.append("}")
    return "\n".join(output)


def main(args=None):
    parser = argparse.ArgumentParser(description="Generate a Solidity regression test from a forge invariant trace")
    parser.add_argument("trace", nargs="?", default="trace.log", help="Trace file, default trace.log")
    parser.add_argument("--name", default="test_regression_failure", help="Test function name")
    options = parser.parse_args(args)

    try:
        lines = Path(options.trace).read_text().splitlines()
    except OSError as e:
        parser.error(f"cannot read trace {options.trace}: {e.strerror}")

    try:
        print(generate_regression_test(lines, options.name))
    except TraceParseError as e:
        print(f"{options.trace}: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
