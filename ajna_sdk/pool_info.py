"""Read-only views over an Ajna ERC-20 pool.

:py:class:`PoolHelper` combines the pool's own views with the
``PoolInfoUtils`` helper contract and returns named tuples.
"""

from typing import NamedTuple

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from ajna_sdk.abi import get_deployed_contract
from ajna_sdk.constants import KNOWN_TOKEN_SYMBOLS, MAX_PRICE, MIN_PRICE, WAD


class BorrowerInfo(NamedTuple):
    """PoolInfoUtils.borrowerInfo(), interest accrued."""

    debt: int
    collateral: int
    t0_np: int


class BorrowerState(NamedTuple):
    """ERC20Pool.borrowerInfo(), as stored by the pool."""

    t0_debt: int
    collateral: int
    np_tp_ratio: int


class BucketInfo(NamedTuple):
    """PoolInfoUtils.bucketInfo()."""

    price: int
    quote_tokens: int
    collateral: int
    bucket_lp: int
    scale: int
    exchange_rate: int


class BucketState(NamedTuple):
    """ERC20Pool.bucketInfo()."""

    lp_accumulator: int
    available_collateral: int
    bankruptcy_time: int
    bucket_deposit: int
    bucket_scale: int


class LenderInfo(NamedTuple):
    lp_balance: int
    deposit_time: int


class LoansInfo(NamedTuple):
    """PoolInfoUtils.poolLoansInfo()."""

    pool_size: int
    loans_count: int
    max_borrower: HexAddress
    pending_inflator: int
    pending_interest_factor: int


class LoansHeapInfo(NamedTuple):
    """ERC20Pool.loansInfo()."""

    max_borrower: HexAddress
    max_t0_debt_to_collateral: int
    no_of_loans: int


class UtilizationInfo(NamedTuple):
    min_debt_amount: int
    collateralization: int
    actual_utilization: int
    target_utilization: int


class PricesInfo(NamedTuple):
    """Pool price pointers and their bucket indexes."""

    hpb: int
    hpb_index: int
    htp: int
    htp_index: int
    lup: int
    lup_index: int


class KickerInfo(NamedTuple):
    claimable: int
    locked: int


class AuctionInfo(NamedTuple):
    kicker: HexAddress
    bond_factor: int
    bond_size: int
    kick_time: int
    reference_price: int
    neutral_price: int
    debt_to_collateral: int
    head: HexAddress
    next: HexAddress
    prev: HexAddress


class ReservesInfo(NamedTuple):
    liquidation_bond_escrowed: int
    reserve_auction_unclaimed: int
    reserve_auction_kicked: int
    total_interest_earned: int


class DebtInfo(NamedTuple):
    debt: int
    accrued_debt: int
    debt_in_auction: int
    t0_debt2_to_collateral: int


class PoolHelper:
    """Views over a single pool.

    Example:

    .. code-block:: python

        helper = PoolHelper(web3, pool_contract, deployment.pool_info_utils)
        print(helper.prices_info())
    """

    def __init__(self, web3: Web3, pool: Contract, pool_info_utils: Contract):
        self.web3 = web3
        self.pool = pool
        self.pool_info_utils = pool_info_utils

        collateral_address = pool.functions.collateralAddress().call()
        quote_address = pool.functions.quoteTokenAddress().call()
        self.collateral_token = get_deployed_contract(web3, "ERC20.json", collateral_address, name=KNOWN_TOKEN_SYMBOLS.get(collateral_address.lower()))
        self.quote_token = get_deployed_contract(web3, "ERC20.json", quote_address, name=KNOWN_TOKEN_SYMBOLS.get(quote_address.lower()))

    @property
    def address(self) -> HexAddress:
        return self.pool.address

    def borrower_info(self, borrower: HexAddress | str) -> BorrowerInfo:
        return BorrowerInfo(*self.pool_info_utils.functions.borrowerInfo(self.pool.address, borrower).call())

    def borrower_state(self, borrower: HexAddress | str) -> BorrowerState:
        return BorrowerState(*self.pool.functions.borrowerInfo(borrower).call())

    def bucket_info(self, index: int) -> BucketInfo:
        return BucketInfo(*self.pool_info_utils.functions.bucketInfo(self.pool.address, index).call())

    def bucket_state(self, index: int) -> BucketState:
        return BucketState(*self.pool.functions.bucketInfo(index).call())

    def lender_info(self, index: int, lender: HexAddress | str) -> LenderInfo:
        return LenderInfo(*self.pool.functions.lenderInfo(index, lender).call())

    def loans_info(self) -> LoansInfo:
        return LoansInfo(*self.pool_info_utils.functions.poolLoansInfo(self.pool.address).call())

    def loans_heap_info(self) -> LoansHeapInfo:
        return LoansHeapInfo(*self.pool.functions.loansInfo().call())

    def utilization_info(self) -> UtilizationInfo:
        return UtilizationInfo(*self.pool_info_utils.functions.poolUtilizationInfo(self.pool.address).call())

    def prices_info(self) -> PricesInfo:
        return PricesInfo(*self.pool_info_utils.functions.poolPricesInfo(self.pool.address).call())

    def kicker_info(self, kicker: HexAddress | str) -> KickerInfo:
        return KickerInfo(*self.pool.functions.kickerInfo(kicker).call())

    def auction_info(self, borrower: HexAddress | str) -> AuctionInfo:
        return AuctionInfo(*self.pool.functions.auctionInfo(borrower).call())

    def reserves_info(self) -> ReservesInfo:
        return ReservesInfo(*self.pool.functions.reservesInfo().call())

    def debt_info(self) -> DebtInfo:
        return DebtInfo(*self.pool.functions.debtInfo().call())

    def debt(self) -> int:
        """Pool debt with pending interest."""
        return self.debt_info().debt

    def hpb(self) -> int:
        return self.prices_info().hpb

    def hpb_index(self) -> int:
        return self.prices_info().hpb_index

    def htp(self) -> int:
        return self.prices_info().htp

    def htp_index(self) -> int:
        return self.prices_info().htp_index

    def lup(self) -> int:
        return self.prices_info().lup

    def lup_index(self) -> int:
        return self.prices_info().lup_index

    def pledged_collateral(self) -> int:
        return self.pool.functions.pledgedCollateral().call()

    def deposit_size(self) -> int:
        return self.pool.functions.depositSize().call()

    def total_t0_debt(self) -> int:
        return self.pool.functions.totalT0Debt().call()

    def total_t0_debt_in_auction(self) -> int:
        return self.pool.functions.totalT0DebtInAuction().call()

    def loans_count(self) -> int:
        """Loans in the heap. Loans in auction are not counted."""
        return self.loans_heap_info().no_of_loans

    def interest_rate(self) -> int:
        rate, _ = self.pool.functions.interestRateInfo().call()
        return rate

    def index_to_price(self, index: int) -> int:
        return self.pool_info_utils.functions.indexToPrice(index).call()

    def price_to_index(self, price: int) -> int:
        return self.pool_info_utils.functions.priceToIndex(price).call()

    def price_to_index_safe(self, price: int) -> int:
        """Bucket index of a price clamped to the range buckets can represent."""
        return self.price_to_index(min(max(price, MIN_PRICE), MAX_PRICE))

    def collateral_balance(self, address: HexAddress | str) -> int:
        return self.collateral_token.functions.balanceOf(address).call()

    def quote_balance(self, address: HexAddress | str) -> int:
        return self.quote_token.functions.balanceOf(address).call()

    def get_origination_fee(self, amount: int) -> int:
        """Fee charged on new debt: a week of interest, at least 0.05%."""
        interest_rate = self.interest_rate()
        fee_rate = max(interest_rate // 52, WAD // 2000)
        return fee_rate * amount // WAD
