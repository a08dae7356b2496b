"""Shared offline fixtures.

:py:class:`FakePoolReader` mimics :py:class:`ajna_sdk.pool_info.PoolHelper`
on top of plain dicts, so invariant checks and state machines
can be tested without a chain.
"""

from collections import defaultdict

import pytest

from ajna_sdk.pool_info import AuctionInfo, BorrowerInfo, BorrowerState, BucketState, KickerInfo, LenderInfo, ReservesInfo, UtilizationInfo
from ajna_sdk.testing import AmountRanges

ZERO = "0x0000000000000000000000000000000000000000"

POOL = "0x00000000000000000000000000000000000000aa"
LENDER = "0x0000000000000000000000000000000000000001"
BORROWER = "0x0000000000000000000000000000000000000002"
BIDDER = "0x0000000000000000000000000000000000000003"
KICKER = "0x0000000000000000000000000000000000000004"
TAKER = "0x0000000000000000000000000000000000000005"


class FakePoolReader:
    """Pool views backed by dicts. Everything not set reads as zero."""

    def __init__(self):
        self.address = POOL
        self.collateral_balances = defaultdict(int)
        self.quote_balances = defaultdict(int)
        self.borrowers: dict[str, BorrowerState] = {}
        self.buckets: dict[int, BucketState] = {}
        self.lp: dict[tuple[int, str], int] = defaultdict(int)
        self.kickers: dict[str, KickerInfo] = {}
        self.auctions: dict[str, AuctionInfo] = {}
        self.reserves = ReservesInfo(0, 0, 0, 0)
        self.pledged = 0
        self.deposits = 0
        self.pool_debt = 0
        self.t0_debt_in_auction = 0
        self.loans = 0
        self.lup_price = 10**18
        self.hpb_price = 10**18
        self.min_debt = 0

    def collateral_balance(self, address):
        return self.collateral_balances[address]

    def quote_balance(self, address):
        return self.quote_balances[address]

    def pledged_collateral(self):
        return self.pledged

    def deposit_size(self):
        return self.deposits

    def debt(self):
        return self.pool_debt

    def total_t0_debt(self):
        return sum(b.t0_debt for b in self.borrowers.values())

    def total_t0_debt_in_auction(self):
        return self.t0_debt_in_auction

    def borrower_state(self, borrower):
        return self.borrowers.get(borrower, BorrowerState(0, 0, 0))

    def borrower_info(self, borrower):
        state = self.borrower_state(borrower)
        return BorrowerInfo(state.t0_debt, state.collateral, 0)

    def bucket_state(self, index):
        return self.buckets.get(index, BucketState(0, 0, 0, 0, 0))

    def lender_info(self, index, lender):
        return LenderInfo(self.lp[(index, lender)], 0)

    def kicker_info(self, kicker):
        return self.kickers.get(kicker, KickerInfo(0, 0))

    def auction_info(self, borrower):
        return self.auctions.get(borrower, AuctionInfo(ZERO, 0, 0, 0, 0, 0, 0, ZERO, ZERO, ZERO))

    def reserves_info(self):
        return self.reserves

    def loans_count(self):
        return self.loans

    def utilization_info(self):
        return UtilizationInfo(self.min_debt, 0, 0, 0)

    def lup(self):
        return self.lup_price

    def hpb(self):
        return self.hpb_price


@pytest.fixture()
def pool_reader() -> FakePoolReader:
    """Pool with one loan and one bucket, all accounting consistent.

    - Borrower has 100 t0 debt against 10 collateral
    - Bucket 2690 holds 500 deposit and 5 collateral, LP split between a lender and a bidder
    """
    reader = FakePoolReader()
    reader.borrowers[BORROWER] = BorrowerState(t0_debt=100, collateral=10, np_tp_ratio=0)
    reader.pledged = 10
    reader.buckets[2690] = BucketState(lp_accumulator=500, available_collateral=5, bankruptcy_time=0, bucket_deposit=500, bucket_scale=10**18)
    reader.lp[(2690, LENDER)] = 300
    reader.lp[(2690, BIDDER)] = 200
    reader.collateral_balances[POOL] = 15
    reader.quote_balances[POOL] = 1000
    reader.deposits = 500
    reader.pool_debt = 100
    reader.loans = 1
    return reader


@pytest.fixture()
def small_amounts() -> AmountRanges:
    """Amount ranges small enough to keep fuzzing examples readable."""
    return AmountRanges(
        min_lend_amount=1,
        max_lend_amount=1000,
        min_borrow_amount=1,
        max_borrow_amount=100,
        min_bid_amount=1,
        max_bid_amount=10,
        min_take_amount=1,
        max_take_amount=10,
        max_sleep=60,
    )
