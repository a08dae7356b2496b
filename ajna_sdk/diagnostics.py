"""Human readable pool diagnostics for debugging fuzz runs and tests.

- :py:func:`dump_book` renders the buckets around the pool price pointers

- :py:func:`summarize_pool` gives one screen of pool health numbers

- :py:func:`validate_pool` asserts loan accounting sanity
"""

import logging
from typing import Iterable

from web3.exceptions import ContractLogicError

from ajna_sdk.constants import MAX_FENWICK_INDEX, WAD
from ajna_sdk.pool_info import PoolHelper

logger = logging.getLogger(__name__)

#: Column width of the book dump
COLUMN_WIDTH = 15

#: Book dump columns
BOOK_HEADERS = ("Index", "Price", "Pointer", "Quote", "Collateral", "LP Outstanding", "Scale")


def _pool_threshold_price(helper: PoolHelper) -> int:
    pledged_collateral = helper.pledged_collateral()
    if pledged_collateral == 0:
        return 0
    return helper.debt() * WAD // pledged_collateral


def dump_book(
    helper: PoolHelper,
    min_bucket_index: int | None = None,
    max_bucket_index: int | None = None,
    with_headers=True,
    csv=False,
) -> str:
    """Render pool buckets as a table.

    By default renders from three buckets above the highest price bucket
    to three buckets below the LUP or the HTP, whichever is lower.

    :param min_bucket_index:
        Highest priced bucket to render

    :param max_bucket_index:
        Lowest priced bucket, exclusive

    :param csv:
        Export as CSV for importing into a spreadsheet

    :return:
        Multi-line string
    """
    w = COLUMN_WIDTH

    def j(text: str) -> str:
        return text.rjust(w)

    def fw(wad: int) -> str:
        return f"{wad / 1e18:>{w}.3f}"

    prices = helper.prices_info()
    lup_index = prices.lup_index
    htp_index = helper.price_to_index_safe(prices.htp)
    ptp = _pool_threshold_price(helper)
    ptp_index = helper.price_to_index_safe(ptp) if ptp > 0 else 0

    if min_bucket_index is None:
        min_bucket_index = max(0, helper.price_to_index(prices.hpb) - 3)

    if max_bucket_index is None:
        if htp_index < MAX_FENWICK_INDEX:
            max_bucket_index = min(MAX_FENWICK_INDEX, max(lup_index, htp_index) + 3)
        else:
            max_bucket_index = min(MAX_FENWICK_INDEX, lup_index + 3)

    assert min_bucket_index < max_bucket_index, f"Bad bucket range {min_bucket_index} - {max_bucket_index}"

    lines = []
    if with_headers:
        if csv:
            lines.append(",".join(BOOK_HEADERS))
        else:
            lines.append("".join(j(h) for h in BOOK_HEADERS))

    for i in range(min_bucket_index, max_bucket_index):
        price = helper.index_to_price(i)
        pointer = ""
        if i == lup_index:
            pointer += "LUP"
        if i == htp_index:
            pointer += "HTP"
        if i == ptp_index:
            pointer += "PTP"

        try:
            bucket = helper.bucket_info(i)
        except ContractLogicError as e:
            logger.debug("Bucket %d read failed: %s", i, e)
            lines.append(f"ERROR retrieving bucket {i} at price {price} ({price / 1e18})")
            continue

        if csv:
            lines.append(
                ",".join(
                    [
                        str(i),
                        str(price / 1e18),
                        pointer,
                        str(bucket.quote_tokens / 1e18),
                        str(bucket.collateral / 1e18),
                        str(bucket.bucket_lp / 1e18),
                        str(bucket.scale / 1e18),
                    ]
                )
            )
        else:
            lines.append(
                "".join(
                    [
                        j(str(i)),
                        fw(price),
                        j(pointer),
                        fw(bucket.quote_tokens),
                        fw(bucket.collateral),
                        fw(bucket.bucket_lp),
                        f"{bucket.scale / 1e18:>{w}.9f}",
                    ]
                )
            )

    return "\n".join(lines)


def summarize_pool(helper: PoolHelper) -> str:
    """Pool health numbers in three lines.

    Reserves are what the pool holds beyond what lenders can claim:
    quote balance + debt - deposits.
    """
    debt = helper.debt()
    utilization = helper.utilization_info()
    loans = helper.loans_info()
    quote_balance = helper.quote_balance(helper.address)
    deposit_size = helper.deposit_size()
    reserves = quote_balance + debt - deposit_size
    pledged_collateral = helper.pledged_collateral()
    interest_rate = helper.interest_rate()
    prices = helper.prices_info()
    ptp = _pool_threshold_price(helper)

    return "\n".join(
        [
            f"actual utlzn:   {utilization.actual_utilization / 1e18:>12.1%}  "
            f"target utlzn:   {utilization.target_utilization / 1e18:>12.1%}  "
            f"collateralization: {utilization.collateralization / 1e18:>9.1%}  "
            f"borrowerDebt:   {debt / 1e18:>12.1f}  "
            f"loan count:     {loans.loans_count:>8}",
            f"contract q bal: {quote_balance / 1e18:>12.1f}  "
            f"deposit:        {deposit_size / 1e18:>12.1f}  "
            f"reserves:       {reserves / 1e18:>12.1f}  "
            f"pledged:        {pledged_collateral / 1e18:>12.1f}  "
            f"rate:           {interest_rate / 1e18:>8.4%}",
            f"lup:            {prices.lup / 1e18:>12.3f}  "
            f"htp:            {prices.htp / 1e18:>12.3f}  "
            f"ptp:            {ptp / 1e18:>12.3f}",
        ]
    )


def validate_pool(helper: PoolHelper, borrowers: Iterable[str]):
    """Assert loan accounting sanity.

    - A collateralized pool cannot owe more than its deposits

    - Debt exists if and only if there are loans

    - Every borrower with debt has a loan
    """
    debt = helper.debt()

    if helper.lup_index() > helper.price_to_index_safe(helper.htp()):
        assert debt <= helper.deposit_size(), f"Pool debt {debt} exceeds deposits {helper.deposit_size()}"

    loans_count = helper.loans_info().loans_count
    if loans_count == 0:
        assert debt == 0, f"No loans but pool debt is {debt}"
    else:
        assert debt > 0, f"{loans_count} loans but no pool debt"

    borrowers_with_debt = sum(1 for borrower in borrowers if helper.borrower_info(borrower).debt > 0)
    assert borrowers_with_debt == loans_count, f"{borrowers_with_debt} borrowers with debt, but {loans_count} loans"


def _worst_case(a: list[int], root: int, level: int, offset: int) -> int:
    if level == 0:
        a[root] = offset
        return offset + 1
    offset = _worst_case(a, 2 * root + 1, level - 1, offset)
    offset = _worst_case(a, 2 * root + 2, level - 1, offset)
    a[root] = offset
    return offset + 1


def worst_case_heap_orientation(n: int, scale: int = 1) -> list[int]:
    """Insertion order that makes the loans max-heap reorient the most.

    Inserting loans with these threshold prices in order
    forces every insert to bubble up to the root.

    :param n:
        Number of loans

    :param scale:
        Multiply each value, to turn positions into token amounts

    :return:
        ``n`` values to insert in order
    """
    assert n > 0, f"Got {n}"
    if n == 1:
        return [0]

    # Smallest power of two that fits n nodes
    tree_size = 1 << (n - 1).bit_length()
    a = [0] * tree_size
    max_depth = tree_size.bit_length() - 2
    _worst_case(a, 0, max_depth, 0)
    return [i * scale for i in a[:n]]
