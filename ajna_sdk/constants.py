"""Ajna and Ethereum mainnet constants.

Token addresses come paired with a reserve account:
a large holder we impersonate on a mainnet fork to fund test actors.
"""

from eth_typing import HexAddress, HexStr

#: Max ERC-20 allowance
MAX_UINT256 = 2**256 - 1

#: AJNA governance token on Ethereum mainnet
AJNA_TOKEN_ADDRESS = HexAddress(HexStr("0x9a96ec9B57Fb64FbC60B423d1f4da7691Bd35079"))

#: ERC20PoolFactory on Ethereum mainnet
ERC20_POOL_FACTORY_ADDRESS = HexAddress(HexStr("0x6146DD43C5622bB6D12A5240ab9CF4de14eDC625"))

#: PoolInfoUtils on Ethereum mainnet
POOL_INFO_UTILS_ADDRESS = HexAddress(HexStr("0x30c5eF2997d6a882DE52c4ec01B6D0a5e5B4fAAE"))

#: keccak256("ERC20_NON_SUBSET_HASH"), the factory key for pools accepting any collateral amount
ERC20_NON_SUBSET_HASH = bytes.fromhex("2263c4378b4920f0bef611a3ff22c506afa4745b3319c50b6d704a874990b8b2")

#: Interest rate new pools are deployed with, 5% as WAD
DEFAULT_INTEREST_RATE = 5 * 10**16

#: Lowest price a bucket can represent, WAD
MIN_PRICE = 99_836_282_890

#: Highest price a bucket can represent, WAD
MAX_PRICE = 1_004_968_987_606512354182109771

#: Bucket index range as seen by a user, before the Fenwick tree offset
MIN_BUCKET_INDEX = -3232
MAX_BUCKET_INDEX = 6926

#: Largest Fenwick tree index, used as "no limit" for kicks and bucket scans
MAX_FENWICK_INDEX = 7388

#: One unit in 18 decimals fixed point
WAD = 10**18

DAI_ADDRESS = HexAddress(HexStr("0x6b175474e89094c44da98b954eedeac495271d0f"))
DAI_RESERVE_ADDRESS = HexAddress(HexStr("0x9759A6Ac90977b93B58547b4A71c78317f391A28"))

MKR_ADDRESS = HexAddress(HexStr("0x9f8F72aA9304c8B593d555F12eF6589cC3A579A2"))
MKR_RESERVE_ADDRESS = HexAddress(HexStr("0x0a3f6849f78076aefadf113f5bed87720274ddc0"))

COMP_ADDRESS = HexAddress(HexStr("0xc00e94Cb662C3520282E6f5717214004A7f26888"))
COMP_RESERVE_ADDRESS = HexAddress(HexStr("0x2775b1c75658be0f640272ccb8c72ac986009e38"))

USDC_ADDRESS = HexAddress(HexStr("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"))
USDC_RESERVE_ADDRESS = HexAddress(HexStr("0xbebc44782c7db0a1a60cb6fe97d0b483032ff1c7"))

USDT_ADDRESS = HexAddress(HexStr("0xdAC17F958D2ee523a2206206994597C13D831ec7"))
USDT_RESERVE_ADDRESS = HexAddress(HexStr("0x5754284f345afc66a98fbb0a0afe71e0f007b949"))

WETH_ADDRESS = HexAddress(HexStr("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"))
WETH_RESERVE_ADDRESS = HexAddress(HexStr("0x2f0b23f53734252bda2277357e97e1517d6b042a"))

#: Lowercased token address -> symbol.
#:
#: Used to give token contracts readable names in gas reports.
#: MKR does not return a string from `symbol()`, so we do not ask the chain.
KNOWN_TOKEN_SYMBOLS = {
    DAI_ADDRESS.lower(): "DAI",
    MKR_ADDRESS.lower(): "MKR",
    COMP_ADDRESS.lower(): "COMP",
    USDC_ADDRESS.lower(): "USDC",
    USDT_ADDRESS.lower(): "USDT",
    WETH_ADDRESS.lower(): "WETH",
    AJNA_TOKEN_ADDRESS.lower(): "AJNA",
}
