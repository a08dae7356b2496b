"""Stateful fuzzing of an Ajna pool.

Hypothesis drives random sequences of lender, borrower, bidder, kicker and taker
actions against a pool and checks :py:mod:`ajna_sdk.invariants` after every step.

Pool actions are best effort: a reverting action is logged and the run continues.
Only a violated invariant fails the run.

Example:

.. code-block:: python

    protocol = create_sdk_for_mkr_dai_pool(web3)
    pool = protocol.get_pool(MKR_ADDRESS, DAI_ADDRESS)
    context = create_pool_state_machine_context(protocol, pool)
    run_pool_state_machine(BorrowRepayStateMachine, context, max_examples=5, stateful_step_count=50)
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from hypothesis import HealthCheck, settings
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, initialize, invariant, rule, run_state_machine_as_test

from ajna_sdk.anvil import AnvilChain, is_anvil
from ajna_sdk.constants import MAX_FENWICK_INDEX, MAX_PRICE, MAX_UINT256, WAD
from ajna_sdk.invariants import (
    PoolActors,
    check_auction_bonds,
    check_bucket_lp,
    check_collateral_balance,
    check_debt_in_auction,
    check_empty_bucket_lp,
    check_global_debt,
    check_loans_and_auctions,
    check_pledged_collateral,
    check_quote_balance,
)
from ajna_sdk.pool_client import AjnaPoolClient
from ajna_sdk.pool_info import PoolHelper

logger = logging.getLogger(__name__)

#: Pool interactions stay within these buckets, highest price first
MIN_BUCKET_INDEX = 2690
MAX_BUCKET_INDEX = 2700

NUM_LENDERS = 10
NUM_BORROWERS = 15
NUM_BIDDERS = 5
NUM_KICKERS = 5
NUM_TAKERS = 5

#: Borrowers are refused if the LUP would fall below this bucket
DRAW_DEBT_LIMIT_INDEX = 7000

#: Time for an unpaid loan to become kickable
KICK_DELAY_SECONDS = 86400 * 200

#: Time for the auction price to come down
TAKE_DELAY_SECONDS = 3600 * 3


class ChainClock(Protocol):
    """What the state machines need from the chain, see :py:class:`ajna_sdk.anvil.AnvilChain`."""

    def time(self) -> int:
        ...

    def sleep(self, seconds: int):
        ...

    def mine(self, blocks: int = 1):
        ...

    def snapshot(self) -> int:
        ...

    def revert(self, snapshot_id: int) -> bool:
        ...


@dataclass(slots=True)
class AmountRanges:
    """Bounds for the amounts hypothesis draws, in token raw units."""

    min_lend_amount: int = 1 * 10**18
    max_lend_amount: int = 10_000 * 10**18
    min_borrow_amount: int = 1 * 10**18
    max_borrow_amount: int = 1_000 * 10**18
    min_bid_amount: int = 1 * 10**18
    max_bid_amount: int = 10 * 10**18
    min_take_amount: int = 5 * 10**16
    max_take_amount: int = 1 * 10**18

    #: Seconds to advance the clock after an action
    max_sleep: int = 12 * 360


@dataclass
class PoolStateMachineContext:
    """Everything a pool state machine run needs."""

    pool: AjnaPoolClient
    helper: PoolHelper
    chain: ChainClock
    actors: PoolActors
    buckets: range = range(MIN_BUCKET_INDEX, MAX_BUCKET_INDEX + 1)
    amounts: AmountRanges = field(default_factory=AmountRanges)

    #: Snapshot the chain when a run starts and revert to it when the run ends
    revert_chain: bool = True

    #: Deposit expiry, relative to the chain clock
    deposit_expiry_seconds: int = 30


class BasePoolStateMachine(RuleBasedStateMachine):
    """Invariants and plumbing shared by the pool state machines.

    Subclasses add rules. Use :py:meth:`bind` to get a runnable class.
    """

    context: PoolStateMachineContext = None

    def __init__(self):
        super().__init__()
        assert self.context is not None, f"{self.__class__.__name__} is not bound to a pool, use bind()"
        self.pool = self.context.pool
        self.pool_helper = self.context.helper
        self.chain = self.context.chain
        self.actors = self.context.actors
        self.amounts = self.context.amounts
        self.snapshot_id = None

    @classmethod
    def bind(cls, context: PoolStateMachineContext) -> type["BasePoolStateMachine"]:
        """Create a state machine class running against a pool."""
        return type(f"Bound{cls.__name__}", (cls,), {"context": context})

    @initialize()
    def start_run(self):
        if self.context.revert_chain:
            self.snapshot_id = self.chain.snapshot()
        self.setup_pool()

    def setup_pool(self):
        """Initial pool state for each run."""

    def teardown(self):
        if self.snapshot_id is not None:
            self.chain.revert(self.snapshot_id)
            self.snapshot_id = None
        logger.info("Tear down")

    #
    # Invariants
    #

    @invariant()
    def pool_collateral_balance(self):
        check_collateral_balance(self.pool_helper, self.context.buckets)
        check_pledged_collateral(self.pool_helper, self.actors)

    @invariant()
    def pool_quote_balance(self):
        check_quote_balance(self.pool_helper, self.actors)

    @invariant()
    def pool_global_debt(self):
        check_global_debt(self.pool_helper, self.actors)

    @invariant()
    def pool_buckets(self):
        check_bucket_lp(self.pool_helper, self.actors, self.context.buckets)
        check_empty_bucket_lp(self.pool_helper, self.context.buckets)

    @invariant()
    def pool_debt_in_auction(self):
        check_debt_in_auction(self.pool_helper, self.actors)

    @invariant()
    def pool_auction_bonds(self):
        check_auction_bonds(self.pool_helper, self.actors)

    @invariant()
    def pool_loans_and_auctions(self):
        check_loans_and_auctions(self.pool_helper, self.actors)

    #
    # Drawing values
    #

    def draw_actor(self, data, role: str) -> int:
        """Index of a random actor of a role."""
        actors = getattr(self.actors, role)
        return data.draw(st.integers(min_value=0, max_value=len(actors) - 1), label=role)

    def draw_amount(self, data, kind: str) -> int:
        low = getattr(self.amounts, f"min_{kind}_amount")
        high = getattr(self.amounts, f"max_{kind}_amount")
        return data.draw(st.integers(min_value=low, max_value=high), label=f"{kind} amount")

    def draw_index(self, data) -> int:
        return data.draw(st.sampled_from(self.context.buckets), label="index")

    def draw_sleep(self, data) -> int:
        return data.draw(st.integers(min_value=0, max_value=self.amounts.max_sleep), label="sleep")

    #
    # Utilities
    #

    def get_expiry(self) -> int:
        return self.chain.time() + self.context.deposit_expiry_seconds

    def add_quote_token(self, lender, amount: int, index: int):
        self.pool.add_quote_token(lender, amount, index, expiry=self.get_expiry())

    def add_collateral(self, actor, amount: int, index: int):
        self.pool.add_collateral(actor, amount, index, expiry=self.get_expiry())

    def get_pool_price(self) -> int:
        """LUP, or the highest priced bucket with deposit when nothing is borrowed."""
        pool_price = self.pool_helper.lup()
        if pool_price == MAX_PRICE:
            pool_price = self.pool_helper.hpb()
        return pool_price

    def ensure_liquidity(self, lender, amount: int):
        """Deposit more quote token to the top bucket if the pool cannot lend ``amount``."""
        quote_on_deposit = self.pool_helper.deposit_size() - self.pool_helper.debt()
        if quote_on_deposit < amount:
            self.add_quote_token(lender, amount + 100 * 10**18, self.context.buckets[0])

    def repay_random_debt(self, data):
        """Repay up to a random amount, capped by the debt and the borrower balance."""
        borrower_index = self.draw_actor(data, "borrowers")
        amount = self.draw_amount(data, "borrow")
        sleep = self.draw_sleep(data)

        borrower = self.actors.borrowers[borrower_index]
        repay_amount = amount
        success = True
        try:
            debt = self.pool_helper.borrower_info(borrower).debt
            repay_amount = min(debt, amount, self.pool_helper.quote_balance(borrower))
            self.pool.repay_debt(borrower, repay_amount, 0, limit_index=DRAW_DEBT_LIMIT_INDEX)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Repay debt reverted: %s", e)
            success = False

        self._log_rule_result(f"borrower{borrower_index}: repay debt {repay_amount}", success)

    @staticmethod
    def _log_rule_result(message: str, success: bool):
        status = "succeeded" if success else "failed"
        logger.info("%s %s", message, status)


class BorrowRepayStateMachine(BasePoolStateMachine):
    """Lending, borrowing and bucket swaps."""

    def setup_pool(self):
        self.add_quote_token(self.actors.lenders[0], self.amounts.max_lend_amount, self.context.buckets[0])

    @rule(data=st.data())
    def add_quote_token_rule(self, data):
        lender_index = self.draw_actor(data, "lenders")
        amount = self.draw_amount(data, "lend")
        index = self.draw_index(data)
        sleep = self.draw_sleep(data)

        lender = self.actors.lenders[lender_index]
        lend_amount = amount
        success = True
        try:
            lend_amount = min(self.pool_helper.quote_balance(lender), amount)
            self.add_quote_token(lender, lend_amount, index)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Add quote token reverted: %s", e)
            success = False

        self._log_rule_result(f"lender{lender_index}: add quote token {lend_amount} at index {index}", success)

    @rule(data=st.data())
    def swap_quote_for_collateral(self, data):
        lender_index = self.draw_actor(data, "lenders")
        bidder_index = self.draw_actor(data, "bidders")
        lend_amount = self.draw_amount(data, "lend")
        bid_amount = self.draw_amount(data, "bid")
        index = self.draw_index(data)
        sleep = self.draw_sleep(data)

        lender = self.actors.lenders[lender_index]
        bidder = self.actors.bidders[bidder_index]
        success = True
        try:
            if self.pool_helper.bucket_state(index).available_collateral < bid_amount:
                self.add_collateral(bidder, bid_amount, index)

            self.add_quote_token(lender, lend_amount, index)
            self.pool.remove_collateral(lender, bid_amount, index)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Swap quote for collateral reverted: %s", e)
            success = False

        self._log_rule_result(f"lender{lender_index}: swap quote {lend_amount} for collateral {bid_amount} from index {index}", success)

    @rule(data=st.data())
    def draw_debt(self, data):
        lender_index = self.draw_actor(data, "lenders")
        borrower_index = self.draw_actor(data, "borrowers")
        amount = self.draw_amount(data, "borrow")
        sleep = self.draw_sleep(data)

        lender = self.actors.lenders[lender_index]
        borrower = self.actors.borrowers[borrower_index]
        collateral_to_deposit = 0
        success = True
        try:
            # Borrow at least the pool minimum debt
            amount = max(amount, self.pool_helper.utilization_info().min_debt_amount + 100 * 10**18)
            self.ensure_liquidity(lender, amount)

            collateral_to_deposit = amount * 2 * WAD // self.get_pool_price()
            self.pool.draw_debt(borrower, amount, DRAW_DEBT_LIMIT_INDEX, collateral_to_deposit)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Draw debt reverted: %s", e)
            success = False

        self._log_rule_result(f"borrower{borrower_index}: draw debt {amount} and pledge {collateral_to_deposit}", success)

    @rule(data=st.data())
    def repay_debt(self, data):
        self.repay_random_debt(data)

    @rule(data=st.data())
    def swap_collateral_for_quote(self, data):
        lender_index = self.draw_actor(data, "lenders")
        bidder_index = self.draw_actor(data, "bidders")
        bid_amount = self.draw_amount(data, "bid")
        lend_amount = self.draw_amount(data, "lend")
        index = self.draw_index(data)
        sleep = self.draw_sleep(data)

        lender = self.actors.lenders[lender_index]
        bidder = self.actors.bidders[bidder_index]
        success = True
        try:
            if self.pool_helper.bucket_state(index).bucket_deposit < lend_amount:
                self.add_quote_token(lender, lend_amount, index)

            self.add_collateral(bidder, bid_amount, index)
            self.pool.remove_quote_token(bidder, lend_amount, index)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Swap collateral for quote reverted: %s", e)
            success = False

        self._log_rule_result(f"bidder{bidder_index}: swap collateral {bid_amount} for quote {lend_amount} at index {index}", success)


class AuctionStateMachine(BasePoolStateMachine):
    """Loans going into liquidation auctions and being taken."""

    def setup_pool(self):
        lender = self.actors.lenders[0]
        self.add_quote_token(lender, self.amounts.max_borrow_amount, self.context.buckets[0])
        self.add_quote_token(lender, self.amounts.max_borrow_amount, self.context.buckets[-1])

    def _draw_debt(self, lender_index: int, borrower_index: int, amount: int, sleep: int) -> bool:
        """Open a fresh loan that is barely collateralized."""
        lender = self.actors.lenders[lender_index]
        borrower = self.actors.borrowers[borrower_index]
        collateral_to_deposit = 0
        success = True
        try:
            # Close any earlier loan so kick and take act on this one
            state = self.pool_helper.borrower_info(borrower)
            if state.debt != 0 or state.collateral != 0:
                self.pool.repay_debt(borrower, MAX_UINT256 if state.debt else 0, state.collateral, limit_index=DRAW_DEBT_LIMIT_INDEX)

            amount = max(amount, self.pool_helper.utilization_info().min_debt_amount + 100 * 10**18)
            self.ensure_liquidity(lender, amount)

            collateral_to_deposit = amount * 101 * WAD // (100 * self.get_pool_price())
            self.pool.draw_debt(borrower, amount, DRAW_DEBT_LIMIT_INDEX, collateral_to_deposit)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Draw debt reverted: %s", e)
            success = False

        self._log_rule_result(f"borrower{borrower_index}: draw debt {amount} and pledge {collateral_to_deposit}", success)
        return success

    def _kick(self, lender_index: int, borrower_index: int, kicker_index: int, amount: int, sleep: int):
        borrower = self.actors.borrowers[borrower_index]
        kicker = self.actors.kickers[kicker_index]

        if self.pool_helper.auction_info(borrower).kick_time != 0:
            return

        success = True
        try:
            self._draw_debt(lender_index, borrower_index, amount, sleep)

            if self.pool_helper.borrower_info(borrower).debt == 0:
                return

            # Let interest make the loan kickable
            self.chain.sleep(KICK_DELAY_SECONDS)
            self.chain.mine(2)

            self.pool.kick(kicker, borrower, MAX_FENWICK_INDEX)

            self.chain.sleep(sleep)
            self.chain.mine(2)
        except Exception as e:
            logger.debug("Kick reverted: %s", e)
            success = False

        self._log_rule_result(f"kicker{kicker_index}: kick borrower borrower{borrower_index}", success)

    @rule(data=st.data())
    def draw_debt(self, data):
        lender_index = self.draw_actor(data, "lenders")
        borrower_index = self.draw_actor(data, "borrowers")
        amount = self.draw_amount(data, "borrow")
        sleep = self.draw_sleep(data)
        self._draw_debt(lender_index, borrower_index, amount, sleep)

    @rule(data=st.data())
    def repay_debt(self, data):
        self.repay_random_debt(data)

    @rule(data=st.data())
    def kick_auction(self, data):
        lender_index = self.draw_actor(data, "lenders")
        borrower_index = self.draw_actor(data, "borrowers")
        kicker_index = self.draw_actor(data, "kickers")
        amount = self.draw_amount(data, "borrow")
        sleep = self.draw_sleep(data)
        self._kick(lender_index, borrower_index, kicker_index, amount, sleep)

    @rule(data=st.data())
    def take_auction(self, data):
        lender_index = self.draw_actor(data, "lenders")
        borrower_index = self.draw_actor(data, "borrowers")
        kicker_index = self.draw_actor(data, "kickers")
        taker_index = self.draw_actor(data, "takers")
        borrow_amount = self.draw_amount(data, "borrow")
        take_amount = self.draw_amount(data, "take")
        sleep = self.draw_sleep(data)

        borrower = self.actors.borrowers[borrower_index]
        taker = self.actors.takers[taker_index]

        if self.pool_helper.auction_info(borrower).kick_time == 0:
            self._kick(lender_index, borrower_index, kicker_index, borrow_amount, sleep)

        success = True
        try:
            self.chain.sleep(TAKE_DELAY_SECONDS)
            self.chain.mine(2)

            self.pool.take(taker, borrower, take_amount, callee=taker)
            self.chain.sleep(sleep)
        except Exception as e:
            logger.debug("Take reverted: %s", e)
            success = False

        self._log_rule_result(f"taker{taker_index}: take collateral {take_amount} from borrower{borrower_index}", success)


def create_pool_state_machine_context(
    protocol,
    pool: AjnaPoolClient,
    number_of_lenders=NUM_LENDERS,
    number_of_borrowers=NUM_BORROWERS,
    number_of_bidders=NUM_BIDDERS,
    number_of_kickers=NUM_KICKERS,
    number_of_takers=NUM_TAKERS,
) -> PoolStateMachineContext:
    """Create and fund the actors of a fuzzing run.

    - Borrowers share 150,000 collateral tokens and get 100,000 quote tokens for interest

    - Lenders, kickers and takers each share 3,000,000,000 quote tokens

    - Bidders share 100 collateral tokens

    Every actor approves the pool for the tokens it holds.

    :param protocol:
        :py:class:`ajna_sdk.protocol.AjnaProtocol` with the pool tokens added
    """
    collateral = pool.get_collateral_token()
    quote = pool.get_quote_token()

    def fund(add_actor, count: int, token, amount: int, extra_token=None, extra_amount: int = 0) -> list:
        actors = []
        for _ in range(count):
            actor = add_actor()
            token.top_up(actor, amount)
            token.approve_max(pool.address, actor)
            if extra_token is not None:
                extra_token.top_up(actor, extra_amount)
                extra_token.approve_max(pool.address, actor)
            actors.append(actor)
        return actors

    logger.info("Initializing pool actors for %s", pool.address)
    actors = PoolActors(
        lenders=fund(protocol.add_lender, number_of_lenders, quote, 3_000_000_000 * 10**18 // number_of_lenders),
        borrowers=fund(protocol.add_borrower, number_of_borrowers, collateral, 150_000 * 10**18 // number_of_borrowers, quote, 100_000 * 10**18),
        bidders=fund(protocol.add_borrower, number_of_bidders, collateral, 100 * 10**18 // number_of_bidders),
        kickers=fund(protocol.add_lender, number_of_kickers, quote, 3_000_000_000 * 10**18 // number_of_kickers),
        takers=fund(protocol.add_lender, number_of_takers, quote, 3_000_000_000 * 10**18 // number_of_takers),
    )

    return PoolStateMachineContext(
        pool=pool,
        helper=pool.get_helper(),
        chain=AnvilChain(protocol.web3),
        actors=actors,
        revert_chain=is_anvil(protocol.web3),
        deposit_expiry_seconds=protocol.config.deposit_expiry_seconds,
    )


def run_pool_state_machine(
    machine_class: type[BasePoolStateMachine],
    context: PoolStateMachineContext,
    max_examples=50,
    stateful_step_count=1000,
    **settings_kwargs,
):
    """Fuzz a pool.

    :param machine_class:
        :py:class:`BorrowRepayStateMachine` or :py:class:`AuctionStateMachine`

    :param settings_kwargs:
        Passed to :py:class:`hypothesis.settings`

    :raise AssertionError:
        An invariant was violated
    """
    bound = machine_class.bind(context)
    run_settings = settings(
        max_examples=max_examples,
        stateful_step_count=stateful_step_count,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.filter_too_much],
        **settings_kwargs,
    )
    run_state_machine_as_test(bound, settings=run_settings)
