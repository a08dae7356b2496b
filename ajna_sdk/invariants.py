"""Pool accounting invariants.

Each check reads the pool through a :py:class:`ajna_sdk.pool_info.PoolHelper`
and compares a pool level accumulator against the sum over the actors
we know of. A failed check raises :py:class:`AssertionError`
with the compared values.

The checks only hold when every account that ever touched the pool
is listed in :py:class:`PoolActors`.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from eth_typing import HexAddress

from ajna_sdk.pool_info import PoolHelper

logger = logging.getLogger(__name__)


@dataclass
class PoolActors:
    """Accounts interacting with a pool, by role."""

    lenders: list[HexAddress] = field(default_factory=list)
    borrowers: list[HexAddress] = field(default_factory=list)
    bidders: list[HexAddress] = field(default_factory=list)
    kickers: list[HexAddress] = field(default_factory=list)
    takers: list[HexAddress] = field(default_factory=list)

    def get_lp_holders(self) -> list[HexAddress]:
        """Everyone who may hold LP in a bucket."""
        return self.lenders + self.borrowers + self.bidders + self.kickers + self.takers


def check_collateral_balance(helper: PoolHelper, buckets: Iterable[int]):
    """Pool collateral token balance is pledged collateral plus collateral in buckets."""
    buckets_collateral = sum(helper.bucket_state(index).available_collateral for index in buckets)
    balance = helper.collateral_balance(helper.address)
    pledged = helper.pledged_collateral()
    assert balance == pledged + buckets_collateral, f"Pool collateral balance {balance} != pledged {pledged} + buckets {buckets_collateral}"


def check_pledged_collateral(helper: PoolHelper, actors: PoolActors):
    """Pledged collateral is the sum of borrower collateral."""
    borrowers_collateral = sum(helper.borrower_state(b).collateral for b in actors.borrowers)
    pledged = helper.pledged_collateral()
    assert borrowers_collateral == pledged, f"Borrowers collateral {borrowers_collateral} != pledged collateral {pledged}"


def check_quote_balance(helper: PoolHelper, actors: PoolActors):
    """Pool quote balance covers the bonds and the deposits not lent out."""
    liquidation_bonds = 0
    for kicker in actors.kickers:
        info = helper.kicker_info(kicker)
        liquidation_bonds += info.claimable + info.locked

    balance = helper.quote_balance(helper.address)
    deposit_size = helper.deposit_size()
    debt = helper.debt()
    assert balance >= liquidation_bonds + deposit_size - debt, f"Pool quote balance {balance} < bonds {liquidation_bonds} + deposits {deposit_size} - debt {debt}"


def check_global_debt(helper: PoolHelper, actors: PoolActors):
    """Total t0 debt is the sum of borrower t0 debt."""
    borrowers_debt = sum(helper.borrower_state(b).t0_debt for b in actors.borrowers)
    total_t0_debt = helper.total_t0_debt()
    assert total_t0_debt == borrowers_debt, f"Total t0 debt {total_t0_debt} != borrowers t0 debt {borrowers_debt}"


def check_bucket_lp(helper: PoolHelper, actors: PoolActors, buckets: Iterable[int]):
    """Bucket LP accumulator is the sum of the LP of its holders."""
    holders = actors.get_lp_holders()
    for index in buckets:
        actors_lp = sum(helper.lender_info(index, holder).lp_balance for holder in holders)
        bucket_lp = helper.bucket_state(index).lp_accumulator
        assert bucket_lp == actors_lp, f"Bucket {index} LP {bucket_lp} != actors LP {actors_lp}"


def check_empty_bucket_lp(helper: PoolHelper, buckets: Iterable[int]):
    """A bucket with no deposit and no collateral has no LP."""
    for index in buckets:
        state = helper.bucket_state(index)
        if state.available_collateral == 0 and state.bucket_deposit == 0:
            assert state.lp_accumulator == 0, f"Empty bucket {index} has LP {state.lp_accumulator}"


def check_debt_in_auction(helper: PoolHelper, actors: PoolActors):
    """Total t0 debt in auction is the t0 debt of kicked borrowers."""
    auctioned_debt = 0
    for borrower in actors.borrowers:
        if helper.auction_info(borrower).kick_time != 0:
            auctioned_debt += helper.borrower_state(borrower).t0_debt

    in_auction = helper.total_t0_debt_in_auction()
    assert in_auction == auctioned_debt, f"Total t0 debt in auction {in_auction} != kicked borrowers t0 debt {auctioned_debt}"


def check_auction_bonds(helper: PoolHelper, actors: PoolActors):
    """Escrowed bonds, kicker locked bonds and auction bond sizes agree."""
    escrowed = helper.reserves_info().liquidation_bond_escrowed
    kickers_locked = sum(helper.kicker_info(k).locked for k in actors.kickers)
    auction_bonds = sum(helper.auction_info(b).bond_size for b in actors.borrowers)
    assert escrowed == kickers_locked == auction_bonds, f"Bonds escrowed {escrowed}, locked by kickers {kickers_locked}, auction bonds {auction_bonds}"


def check_loans_and_auctions(helper: PoolHelper, actors: PoolActors):
    """Every borrower with debt has either a loan in the heap or an auction."""
    borrowers_with_debt = 0
    auctions = 0
    for borrower in actors.borrowers:
        if helper.borrower_state(borrower).t0_debt != 0:
            borrowers_with_debt += 1
            if helper.auction_info(borrower).kick_time != 0:
                auctions += 1

    loans = helper.loans_count()
    assert borrowers_with_debt == loans + auctions, f"Borrowers with debt {borrowers_with_debt} != loans {loans} + auctions {auctions}"


def check_all_invariants(helper: PoolHelper, actors: PoolActors, buckets: Iterable[int]):
    """Run all pool invariant checks.

    :param buckets:
        Bucket indices the actors may have touched

    :raise AssertionError:
        On the first violated invariant
    """
    buckets = list(buckets)
    check_collateral_balance(helper, buckets)
    check_pledged_collateral(helper, actors)
    check_quote_balance(helper, actors)
    check_global_debt(helper, actors)
    check_bucket_lp(helper, actors, buckets)
    check_empty_bucket_lp(helper, buckets)
    check_debt_in_auction(helper, actors)
    check_auction_bonds(helper, actors)
    check_loans_and_auctions(helper, actors)
    logger.debug("All invariants hold for pool %s", helper.address)
