"""Pool client calls with a mocked pool contract."""

from unittest.mock import MagicMock, patch

import pytest

from ajna_sdk.config import AjnaSdkConfig
from ajna_sdk.pool_client import AjnaPoolClient, PoolOperationFailed, is_deployed_pool_address
from ajna_sdk.tx import TransactionReverted

LENDER = "0x0000000000000000000000000000000000000001"
BORROWER = "0x0000000000000000000000000000000000000002"
KICKER = "0x0000000000000000000000000000000000000003"


@pytest.fixture()
def protocol():
    protocol = MagicMock()
    protocol.config = AjnaSdkConfig()
    protocol.web3.eth.get_block.return_value = {"timestamp": 1_000}
    protocol.get_lender.side_effect = [LENDER].__getitem__
    protocol.get_borrower.side_effect = [BORROWER].__getitem__
    return protocol


@pytest.fixture()
def pool_contract():
    pool_contract = MagicMock()
    pool_contract.address = "0x00000000000000000000000000000000000000aa"
    return pool_contract


@pytest.fixture()
def pool(protocol, pool_contract) -> AjnaPoolClient:
    return AjnaPoolClient(protocol, pool_contract)


@pytest.fixture()
def send():
    with patch("ajna_sdk.pool_client.send_transaction") as send:
        yield send


def test_add_quote_token_expiry(pool, pool_contract, send):
    """Deposits expire a configured time after the latest block."""
    pool.add_quote_token(LENDER, 10**21, 3000)
    pool_contract.functions.addQuoteToken.assert_called_once_with(10**21, 3000, 1_030)
    assert send.call_args[0][2] == LENDER


def test_add_collateral_explicit_expiry(pool, pool_contract, send):
    pool.add_collateral(LENDER, 10**18, 2690, expiry=5_000)
    pool_contract.functions.addCollateral.assert_called_once_with(10**18, 2690, 5_000)


def test_draw_and_repay(pool, pool_contract, send):
    pool.draw_debt(BORROWER, 10**21, 7000, 10**19)
    pool_contract.functions.drawDebt.assert_called_once_with(BORROWER, 10**21, 7000, 10**19)

    pool.repay_debt(BORROWER, 10**21, 0)
    pool_contract.functions.repayDebt.assert_called_once_with(BORROWER, 10**21, 0, BORROWER, 7388)


def test_kick_take_withdraw(pool, pool_contract, send):
    pool.kick(KICKER, BORROWER)
    pool_contract.functions.kick.assert_called_once_with(BORROWER, 7388)
    assert send.call_args[0][2] == KICKER

    pool.take(KICKER, BORROWER, 10**18)
    pool_contract.functions.take.assert_called_once_with(BORROWER, 10**18, KICKER, b"")

    pool.withdraw_bonds(KICKER)
    assert pool_contract.functions.withdrawBonds.call_args[0][0] == KICKER


def test_revert_message(pool, send):
    send.side_effect = TransactionReverted("reverted", "execution reverted: BucketBankruptcyBlock()")

    with pytest.raises(PoolOperationFailed) as exc_info:
        pool.remove_quote_token(LENDER, 10**18, 3000)

    assert exc_info.value.revert_reason == "execution reverted: BucketBankruptcyBlock()"
    assert "Revert message: execution reverted: BucketBankruptcyBlock()" in str(exc_info.value)


def test_deposit_quote_token_by_index(pool, pool_contract, protocol, send):
    pool.deposit_quote_token(10**21, 3000, 0, ensure_approval=True)

    protocol.get_token.return_value.approve.assert_called_once_with(pool.address, 10**21, LENDER)
    pool_contract.functions.addQuoteToken.assert_called_once_with(10**21, 3000, 1_030)


def test_ensure_passes(pool, send):
    """Index based operations can be allowed to fail."""
    send.side_effect = TransactionReverted("reverted", "execution reverted: LUPBelowHTP()")

    assert pool.borrow(10**21, 0, ensure_passes=False) is None

    with pytest.raises(PoolOperationFailed):
        pool.borrow(10**21, 0)


def test_deposit_and_withdraw_collateral(pool, pool_contract, send):
    pool.deposit_collateral(10**19, 0)
    pool_contract.functions.drawDebt.assert_called_once_with(BORROWER, 0, 7388, 10**19)

    pool.withdraw_collateral(10**19, 0)
    pool_contract.functions.repayDebt.assert_called_once_with(BORROWER, 0, 10**19, BORROWER, 7388)


def test_helper_is_cached(pool, protocol):
    with patch("ajna_sdk.pool_client.PoolHelper") as helper_class:
        assert pool.get_helper() is pool.get_helper()
    helper_class.assert_called_once_with(protocol.web3, pool.pool_contract, protocol.deployment.pool_info_utils)


def test_is_deployed_pool_address():
    assert not is_deployed_pool_address("0x0000000000000000000000000000000000000000")
    assert not is_deployed_pool_address(None)
    assert is_deployed_pool_address("0x00000000000000000000000000000000000000aa")
