"""Pool state machines against a fake pool and clock.

:py:class:`FakePool` records what the machines send to it but does not
change the fake reader, so the pool accounting stays consistent unless
a test breaks it on purpose. :py:class:`LedgerPool` books every call
into the reader, so loans can be drawn, kicked and taken.
"""

import pytest

from ajna_sdk.invariants import PoolActors, check_all_invariants
from ajna_sdk.pool_client import PoolOperationFailed
from ajna_sdk.pool_info import AuctionInfo, BorrowerState, BucketState, KickerInfo
from ajna_sdk.testing import (
    KICK_DELAY_SECONDS,
    TAKE_DELAY_SECONDS,
    AuctionStateMachine,
    BasePoolStateMachine,
    BorrowRepayStateMachine,
    PoolStateMachineContext,
    run_pool_state_machine,
)

from conftest import BIDDER, BORROWER, KICKER, LENDER, TAKER, ZERO, FakePoolReader


class FakeChain:
    def __init__(self):
        self.now = 1_700_000_000
        self.snapshots = 0
        self.reverts = 0
        self.slept = 0

    def time(self) -> int:
        return self.now

    def sleep(self, seconds: int):
        self.slept += seconds
        self.now += seconds

    def mine(self, blocks: int = 1):
        pass

    def snapshot(self) -> int:
        self.snapshots += 1
        return self.snapshots

    def revert(self, snapshot_id: int) -> bool:
        self.reverts += 1
        return True


class FakePool:
    """Records calls, optionally reverting everything but quote token deposits."""

    def __init__(self, revert_others=False):
        self.calls = []
        self.revert_others = revert_others

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.revert_others and name != "add_quote_token":
            raise PoolOperationFailed(f"{name} failed", "revert")

    def add_quote_token(self, lender, amount, index, expiry=None):
        self._record("add_quote_token", lender, amount, index, expiry)

    def remove_quote_token(self, lender, max_amount, index):
        self._record("remove_quote_token", lender, max_amount, index)

    def add_collateral(self, actor, amount, index, expiry=None):
        self._record("add_collateral", actor, amount, index, expiry)

    def remove_collateral(self, actor, max_amount, index):
        self._record("remove_collateral", actor, max_amount, index)

    def draw_debt(self, borrower, amount, limit_index, collateral_to_pledge):
        self._record("draw_debt", borrower, amount, limit_index, collateral_to_pledge)

    def repay_debt(self, borrower, max_quote_amount, collateral_to_pull, limit_index=7388, receiver=None):
        self._record("repay_debt", borrower, max_quote_amount, collateral_to_pull)

    def kick(self, kicker, borrower, np_limit_index=7388):
        self._record("kick", kicker, borrower)

    def take(self, taker, borrower, max_amount, callee=None, data=b""):
        self._record("take", taker, borrower, max_amount)


class LedgerPool:
    """Books deposits, loans and auctions into a :py:class:`FakePoolReader`.

    - Interest is not modelled, a loan becomes kickable once it is
      ``KICK_DELAY_SECONDS`` old
    - A take buys all collateral and clears all debt of the auction
    """

    def __init__(self, reader: FakePoolReader, chain: "FakeChain"):
        self.reader = reader
        self.chain = chain
        self.calls = []
        self.drawn_at = {}

    def _revert(self, name: str, reason: str):
        raise PoolOperationFailed(f"Failed to {name}. Revert message: {reason}", reason)

    def add_quote_token(self, lender, amount, index, expiry=None):
        reader = self.reader
        bucket = reader.bucket_state(index)
        reader.buckets[index] = BucketState(bucket.lp_accumulator + amount, bucket.available_collateral, 0, bucket.bucket_deposit + amount, 10**18)
        reader.lp[(index, lender)] += amount
        reader.deposits += amount
        reader.quote_balances[reader.address] += amount
        self.calls.append(("add_quote_token", lender, amount, index, self.chain.now))

    def draw_debt(self, borrower, amount, limit_index, collateral_to_pledge):
        reader = self.reader
        if borrower in reader.auctions:
            self._revert("draw debt", "AuctionActive()")

        state = reader.borrower_state(borrower)
        if state.t0_debt == 0 and amount > 0:
            reader.loans += 1
            self.drawn_at[borrower] = self.chain.now

        reader.borrowers[borrower] = BorrowerState(state.t0_debt + amount, state.collateral + collateral_to_pledge, 0)
        reader.pledged += collateral_to_pledge
        reader.collateral_balances[reader.address] += collateral_to_pledge
        reader.pool_debt += amount
        reader.quote_balances[reader.address] -= amount
        self.calls.append(("draw_debt", borrower, amount, collateral_to_pledge, self.chain.now))

    def repay_debt(self, borrower, max_quote_amount, collateral_to_pull, limit_index=7388, receiver=None):
        reader = self.reader
        if borrower in reader.auctions:
            self._revert("repay debt", "AuctionActive()")

        state = reader.borrower_state(borrower)
        repaid = min(max_quote_amount, state.t0_debt)
        pulled = min(collateral_to_pull, state.collateral)
        if repaid and repaid == state.t0_debt:
            reader.loans -= 1

        remaining = BorrowerState(state.t0_debt - repaid, state.collateral - pulled, 0)
        if remaining.t0_debt or remaining.collateral:
            reader.borrowers[borrower] = remaining
        else:
            reader.borrowers.pop(borrower, None)

        reader.pledged -= pulled
        reader.collateral_balances[reader.address] -= pulled
        reader.pool_debt -= repaid
        reader.quote_balances[reader.address] += repaid
        self.calls.append(("repay_debt", borrower, repaid, pulled, self.chain.now))

    def kick(self, kicker, borrower, np_limit_index=7388):
        reader = self.reader
        state = reader.borrower_state(borrower)
        if state.t0_debt == 0:
            self._revert("kick", "NoDebt()")
        if borrower in reader.auctions:
            self._revert("kick", "AuctionActive()")
        if self.chain.now < self.drawn_at[borrower] + KICK_DELAY_SECONDS:
            self._revert("kick", "BorrowerOk()")

        bond = max(state.t0_debt // 10, 1)
        reader.auctions[borrower] = AuctionInfo(kicker, 10**16, bond, self.chain.now, 0, 0, 0, ZERO, ZERO, ZERO)
        kicker_info = reader.kicker_info(kicker)
        reader.kickers[kicker] = KickerInfo(kicker_info.claimable, kicker_info.locked + bond)
        reader.reserves = reader.reserves._replace(liquidation_bond_escrowed=reader.reserves.liquidation_bond_escrowed + bond)
        reader.quote_balances[reader.address] += bond
        reader.loans -= 1
        reader.t0_debt_in_auction += state.t0_debt
        self.calls.append(("kick", kicker, borrower, self.chain.now))

    def take(self, taker, borrower, max_amount, callee=None, data=b""):
        reader = self.reader
        auction = reader.auctions.get(borrower)
        if auction is None:
            self._revert("take", "NoAuction()")

        state = reader.borrowers.pop(borrower)
        del reader.auctions[borrower]
        reader.quote_balances[reader.address] += state.t0_debt
        reader.pool_debt -= state.t0_debt
        reader.t0_debt_in_auction -= state.t0_debt
        reader.pledged -= state.collateral
        reader.collateral_balances[reader.address] -= state.collateral

        # Auction is settled, the bond becomes claimable
        kicker_info = reader.kicker_info(auction.kicker)
        reader.kickers[auction.kicker] = KickerInfo(kicker_info.claimable + auction.bond_size, kicker_info.locked - auction.bond_size)
        reader.reserves = reader.reserves._replace(liquidation_bond_escrowed=reader.reserves.liquidation_bond_escrowed - auction.bond_size)
        self.calls.append(("take", taker, borrower, max_amount, self.chain.now))


class DrawnValues:
    """Hands out preset values in place of hypothesis ``st.data()`` draws."""

    def __init__(self, *values):
        self.values = iter(values)

    def draw(self, strategy, label=None):
        return next(self.values)


@pytest.fixture()
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def actors() -> PoolActors:
    return PoolActors(lenders=[LENDER], borrowers=[BORROWER], bidders=[BIDDER], kickers=[KICKER], takers=[TAKER])


def create_context(pool, pool_reader, chain, actors, amounts) -> PoolStateMachineContext:
    return PoolStateMachineContext(
        pool=pool,
        helper=pool_reader,
        chain=chain,
        actors=actors,
        buckets=range(2690, 2693),
        amounts=amounts,
    )


def test_unbound_machine_refuses_to_run():
    """A machine needs a pool."""
    with pytest.raises(AssertionError, match="not bound"):
        BorrowRepayStateMachine()


def test_bind_creates_subclass(pool_reader, chain, actors, small_amounts):
    context = create_context(FakePool(), pool_reader, chain, actors, small_amounts)
    bound = BorrowRepayStateMachine.bind(context)
    assert issubclass(bound, BorrowRepayStateMachine)
    assert issubclass(bound, BasePoolStateMachine)
    assert bound.context is context
    assert BorrowRepayStateMachine.context is None


def test_borrow_repay_machine(pool_reader, chain, actors, small_amounts):
    """Rules reach the pool and every run is rolled back."""
    pool = FakePool()
    context = create_context(pool, pool_reader, chain, actors, small_amounts)

    run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=5, stateful_step_count=10, database=None)

    # Initial deposit at the top bucket for each run
    assert pool.calls[0][:4] == ("add_quote_token", LENDER, 1000, 2690)
    assert pool.calls[0][4] >= 1_700_000_030

    names = {call[0] for call in pool.calls}
    assert names <= {"add_quote_token", "remove_quote_token", "add_collateral", "remove_collateral", "draw_debt", "repay_debt"}
    assert chain.snapshots > 0
    assert chain.snapshots == chain.reverts


def test_draw_debt_collateral(pool_reader, chain, actors, small_amounts):
    """Borrowers pledge twice the loan value at the pool price."""
    pool = FakePool()
    pool_reader.lup_price = 2 * 10**18
    context = create_context(pool, pool_reader, chain, actors, small_amounts)

    run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=10, stateful_step_count=10, database=None)

    draws = [call for call in pool.calls if call[0] == "draw_debt"]
    for _, borrower, amount, limit_index, collateral in draws:
        assert borrower == BORROWER
        assert limit_index == 7000
        assert collateral == amount * 2 * 10**18 // (2 * 10**18)


def test_failing_actions_do_not_stop_the_run(pool_reader, chain, actors, small_amounts):
    """Reverts are logged, only invariants fail a run."""
    pool = FakePool(revert_others=True)
    context = create_context(pool, pool_reader, chain, actors, small_amounts)
    run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=3, stateful_step_count=10, database=None)
    assert chain.snapshots == chain.reverts


def test_invariant_violation_fails_the_run(pool_reader, chain, actors, small_amounts):
    pool_reader.pledged = 11
    context = create_context(FakePool(), pool_reader, chain, actors, small_amounts)
    with pytest.raises(AssertionError):
        run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=3, stateful_step_count=5, database=None)


def test_auction_machine(pool_reader, chain, actors, small_amounts):
    """Without debt the kick is skipped, take is still attempted after the auction delay."""
    pool_reader.borrowers.clear()
    pool_reader.pledged = 0
    pool_reader.collateral_balances.clear()
    pool_reader.buckets.clear()
    pool_reader.lp.clear()
    pool_reader.loans = 0
    pool = FakePool()
    context = create_context(pool, pool_reader, chain, actors, small_amounts)

    run_pool_state_machine(AuctionStateMachine, context, max_examples=5, stateful_step_count=10, database=None)

    # Initial deposits to both ends of the bucket range
    assert pool.calls[0][:4] == ("add_quote_token", LENDER, 100, 2690)
    assert pool.calls[1][:4] == ("add_quote_token", LENDER, 100, 2692)
    assert not any(call[0] == "kick" for call in pool.calls)
    assert chain.snapshots == chain.reverts


def test_no_chain_revert(pool_reader, chain, actors, small_amounts):
    context = create_context(FakePool(), pool_reader, chain, actors, small_amounts)
    context.revert_chain = False
    run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=2, stateful_step_count=3, database=None)
    assert chain.snapshots == 0
    assert chain.reverts == 0


def test_loan_kicked_and_taken(chain, actors, small_amounts):
    """A loan is drawn, kicked after the kick delay and taken after the take delay."""
    reader = FakePoolReader()
    pool = LedgerPool(reader, chain)
    context = create_context(pool, reader, chain, actors, small_amounts)
    machine = AuctionStateMachine.bind(context)()
    machine.start_run()

    # lender, borrower, kicker, borrow amount, sleep
    machine.kick_auction(DrawnValues(0, 0, 0, 50, 30))

    draw = next(call for call in pool.calls if call[0] == "draw_debt")
    # Raised to the minimum debt and pledged at 101% of the pool price
    assert draw[1:4] == (BORROWER, 100 * 10**18, 101 * 10**18)

    auction = reader.auction_info(BORROWER)
    assert auction.kicker == KICKER
    assert auction.bond_size == 10 * 10**18
    assert auction.kick_time >= draw[4] + KICK_DELAY_SECONDS
    assert reader.total_t0_debt_in_auction() == 100 * 10**18
    assert reader.loans_count() == 0
    check_all_invariants(reader, actors, context.buckets)

    # lender, borrower, kicker, taker, borrow amount, take amount, sleep
    machine.take_auction(DrawnValues(0, 0, 0, 0, 50, 5, 30))

    take = pool.calls[-1]
    assert take[:4] == ("take", TAKER, BORROWER, 5)
    assert take[4] >= auction.kick_time + TAKE_DELAY_SECONDS
    assert reader.auction_info(BORROWER).kick_time == 0
    assert reader.kicker_info(KICKER) == KickerInfo(claimable=10 * 10**18, locked=0)
    assert reader.total_t0_debt_in_auction() == 0
    check_all_invariants(reader, actors, context.buckets)

    machine.teardown()
    assert chain.reverts == 1


def test_take_kicks_first(chain, actors, small_amounts):
    """Taking from a borrower not in auction draws a loan and kicks it first."""
    reader = FakePoolReader()
    pool = LedgerPool(reader, chain)
    context = create_context(pool, reader, chain, actors, small_amounts)
    machine = AuctionStateMachine.bind(context)()
    machine.start_run()

    machine.take_auction(DrawnValues(0, 0, 0, 0, 50, 5, 0))

    names = [call[0] for call in pool.calls]
    assert names == ["add_quote_token", "add_quote_token", "add_quote_token", "draw_debt", "kick", "take"]
    check_all_invariants(reader, actors, context.buckets)


def test_second_kick_skipped_while_in_auction(chain, actors, small_amounts):
    reader = FakePoolReader()
    pool = LedgerPool(reader, chain)
    context = create_context(pool, reader, chain, actors, small_amounts)
    machine = AuctionStateMachine.bind(context)()
    machine.start_run()

    machine.kick_auction(DrawnValues(0, 0, 0, 50, 0))
    calls = len(pool.calls)
    machine.kick_auction(DrawnValues(0, 0, 0, 50, 0))

    assert len(pool.calls) == calls
    assert reader.auction_info(BORROWER).kicker == KICKER


def test_auction_machine_keeps_pool_accounts(chain, actors, small_amounts):
    """Invariants hold after every step while loans are drawn, repaid, kicked and taken."""
    reader = FakePoolReader()
    reader.quote_balances[BORROWER] = 10**24
    pool = LedgerPool(reader, chain)
    context = create_context(pool, reader, chain, actors, small_amounts)

    run_pool_state_machine(AuctionStateMachine, context, max_examples=10, stateful_step_count=10, database=None)

    names = {call[0] for call in pool.calls}
    assert "add_quote_token" in names
    assert names <= {"add_quote_token", "draw_debt", "repay_debt", "kick", "take"}
    assert chain.snapshots == chain.reverts
