"""Pool and PoolInfoUtils views decoded from mocked contract calls."""

from unittest.mock import MagicMock, patch

import pytest

from ajna_sdk.abi import get_abi_by_filename
from ajna_sdk.constants import MAX_PRICE, MIN_PRICE, WAD
from ajna_sdk.pool_info import AuctionInfo, BorrowerInfo, BorrowerState, PoolHelper, PricesInfo

POOL = "0x00000000000000000000000000000000000000aa"
BORROWER = "0x0000000000000000000000000000000000000002"
KICKER = "0x0000000000000000000000000000000000000004"
NEXT = "0x0000000000000000000000000000000000000007"
ZERO = "0x0000000000000000000000000000000000000000"


@pytest.fixture()
def pool_contract():
    pool_contract = MagicMock()
    pool_contract.address = POOL
    pool_contract.functions.collateralAddress.return_value.call.return_value = "0x9f8F72aA9304c8B593d555F12eF6589cC3A579A2"
    pool_contract.functions.quoteTokenAddress.return_value.call.return_value = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
    return pool_contract


@pytest.fixture()
def pool_info_utils():
    return MagicMock()


@pytest.fixture()
def helper(pool_contract, pool_info_utils) -> PoolHelper:
    with patch("ajna_sdk.pool_info.get_deployed_contract"):
        return PoolHelper(MagicMock(), pool_contract, pool_info_utils)


def set_interest_rate(pool_contract, rate: int):
    pool_contract.functions.interestRateInfo.return_value.call.return_value = (rate, 1_700_000_000)


def test_token_contracts_named_by_symbol(pool_contract, pool_info_utils):
    with patch("ajna_sdk.pool_info.get_deployed_contract") as get_deployed_contract:
        PoolHelper(MagicMock(), pool_contract, pool_info_utils)
    names = [c.kwargs["name"] for c in get_deployed_contract.call_args_list]
    assert names == ["MKR", "DAI"]


def test_auction_info_decodes_all_outputs(helper, pool_contract):
    pool_contract.functions.auctionInfo.return_value.call.return_value = (KICKER, 10**16, 5 * WAD, 1_700_000_000, 2 * WAD, 3 * WAD, 4 * WAD, ZERO, NEXT, ZERO)

    auction = helper.auction_info(BORROWER)

    pool_contract.functions.auctionInfo.assert_called_once_with(BORROWER)
    assert auction == AuctionInfo(KICKER, 10**16, 5 * WAD, 1_700_000_000, 2 * WAD, 3 * WAD, 4 * WAD, ZERO, NEXT, ZERO)
    assert auction.debt_to_collateral == 4 * WAD
    assert auction.head == ZERO
    assert auction.next == NEXT


def test_auction_info_fields_follow_abi():
    entry = next(e for e in get_abi_by_filename("ajna/ERC20Pool.json") if e.get("name") == "auctionInfo")
    outputs = [o["name"].rstrip("_") for o in entry["outputs"]]
    assert len(outputs) == len(AuctionInfo._fields)
    assert outputs.index("debtToCollateral") == AuctionInfo._fields.index("debt_to_collateral")


def test_borrower_info(helper, pool_info_utils):
    pool_info_utils.functions.borrowerInfo.return_value.call.return_value = (105 * WAD, 10 * WAD, 12 * WAD)
    assert helper.borrower_info(BORROWER) == BorrowerInfo(105 * WAD, 10 * WAD, 12 * WAD)
    pool_info_utils.functions.borrowerInfo.assert_called_once_with(POOL, BORROWER)


def test_borrower_state(helper, pool_contract):
    pool_contract.functions.borrowerInfo.return_value.call.return_value = (100 * WAD, 10 * WAD, WAD)
    state = helper.borrower_state(BORROWER)
    assert state == BorrowerState(100 * WAD, 10 * WAD, WAD)
    assert state.t0_debt == 100 * WAD
    pool_contract.functions.borrowerInfo.assert_called_once_with(BORROWER)


def test_prices_info(helper, pool_info_utils):
    pool_info_utils.functions.poolPricesInfo.return_value.call.return_value = (3_000 * WAD, 2_000, 1_000 * WAD, 3_000, 2_500 * WAD, 2_100)

    assert helper.prices_info() == PricesInfo(3_000 * WAD, 2_000, 1_000 * WAD, 3_000, 2_500 * WAD, 2_100)
    assert helper.hpb() == 3_000 * WAD
    assert helper.htp_index() == 3_000
    assert helper.lup() == 2_500 * WAD
    assert helper.lup_index() == 2_100
    pool_info_utils.functions.poolPricesInfo.assert_called_with(POOL)


def test_interest_rate(helper, pool_contract):
    set_interest_rate(pool_contract, 5 * 10**16)
    assert helper.interest_rate() == 5 * 10**16


def test_origination_fee_floor(helper, pool_contract):
    """Under 2.6% APR a week of interest is less than the 0.05% minimum."""
    set_interest_rate(pool_contract, 10**16)
    assert helper.get_origination_fee(1_000 * WAD) == WAD // 2


def test_origination_fee_week_of_interest(helper, pool_contract):
    set_interest_rate(pool_contract, 10 * 10**16)
    assert helper.get_origination_fee(WAD) == 10 * 10**16 // 52


def test_origination_fee_high_rate(helper, pool_contract):
    """Rates over 52% APR charge over 1%, as the pool rate has no cap below that."""
    set_interest_rate(pool_contract, 60 * 10**16)
    fee = helper.get_origination_fee(WAD)
    assert fee == 11_538_461_538_461_538
    assert fee > WAD // 100


def test_price_to_index_safe_clamps(helper, pool_info_utils):
    price_to_index = pool_info_utils.functions.priceToIndex
    price_to_index.return_value.call.return_value = 4_156

    assert helper.price_to_index_safe(0) == 4_156
    assert price_to_index.call_args.args == (MIN_PRICE,)

    helper.price_to_index_safe(MAX_PRICE * 10)
    assert price_to_index.call_args.args == (MAX_PRICE,)

    helper.price_to_index_safe(2_000 * WAD)
    assert price_to_index.call_args.args == (2_000 * WAD,)
