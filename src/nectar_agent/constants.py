"""BNB Smart Chain contract addresses and protocol constants."""

from typing import TypedDict


class AssetInfo(TypedDict):
    address: str
    decimals: int


class PancakeSwapAddresses(TypedDict):
    smart_router: str
    quoter: str


BSC_CHAIN_ID = 56

# Native BNB has no contract; balances for it come from eth_getBalance.
NATIVE_SYMBOL = "BNB"
WRAPPED_NATIVE_SYMBOL = "WBNB"

BSC_ASSETS: dict[str, AssetInfo] = {
    "USDT": {"address": "0x55d398326f99059fF775485246999027B3197955", "decimals": 18},
    "USDC": {"address": "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", "decimals": 18},
    "BTCB": {"address": "0x7130d2A12B9BCbFAe4f2634d864A1Ee1Ce3Ead9c", "decimals": 18},
    "WETH": {"address": "0x2170Ed0880ac9A755fd29B2688956BD959F933F8", "decimals": 18},
    "WBNB": {"address": "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c", "decimals": 18},
    "FDUSD": {"address": "0xc5f0f7b66764F6ec8C8Dff7BA683102295E16409", "decimals": 18},
    "USD1": {"address": "0x8d0D000Ee44948FC98c9B98A4FA4921476f08B0d", "decimals": 18},
    "slisBNB": {
        "address": "0xB0b84D294e0C75A6abe60171b70edEb2EFd14A1B",
        "decimals": 18,
    },
}

VENUS_COMPTROLLER = "0xfD36E2c2a6789Db23113685031d7F16329158384"
VENUS_VTOKENS: dict[str, str] = {
    "USDT": "0xfD5840Cd36d94D7229439859C0112a4185BC0255",
    "USDC": "0xecA88125a5ADbe82614ffC12D0DB554E2e2867C8",
    "BTCB": "0x882C173bC7Ff3b7786CA16dfeD3DFFfb9Ee7847B",
    "WETH": "0xf508fCD89b8bd15579dc79A6827cB4686A3592c8",
    "WBNB": "0xA07c5b74C9B40447a954e1466938b865b6BBea36",
}
# Venus accrues per block; BSC produces one block every 3s.
VENUS_BLOCKS_PER_DAY = 28_800

AAVE_POOL = "0x6807dc923806fE8Fd134338EABCA509979a7e0cB"
AAVE_ATOKENS: dict[str, str] = {
    "USDT": "0xa9251ca9DE909CB71783723713B21E4233fbf1B1",
    "USDC": "0x00901a076785e0906d1028c7d6372d247bec7d61",
    "BTCB": "0x56a7ddc4e848EbF43845854205ad71D5D5F72d3D",
    "WETH": "0x2E94171493fAbE316b6205f1585779C887771E2F",
    "WBNB": "0x9B00a09492a626678E5A3009982191586C444Df9",
}
# Rates above this are treated as misreads of the reserve tuple.
AAVE_MAX_SANE_APY = 50.0

LISTA_VAULTS: dict[str, str] = {
    "WBNB": "0x57134a64B7cD9F9eb72F8255A671F5Bf2fe3E2d0",
    "USD1": "0xfa27f172e0b6ebcEF9c51ABf817E2cb142FbE627",
}

PANCAKESWAP: PancakeSwapAddresses = {
    "smart_router": "0x13f4EA83D0bd40E75C8222255bc855a974568Dd4",
    "quoter": "0xB048Bbc1Ee6b733FFfCFb9e9CeF7375518e25997",
}
PANCAKESWAP_FEE_TIERS: tuple[int, ...] = (100, 500, 2500, 10000)

PROTOCOL_TRUST: dict[str, float] = {
    "venus": 95,
    "aave": 98,
    "lista": 80,
    "pendle": 85,
}
DEFAULT_PROTOCOL_TRUST = 50.0

DEFAULT_BSC_RPC_URLS: list[str] = [
    "https://bsc-dataseed1.binance.org",
    "https://rpc.ankr.com/bsc",
    "https://bsc.publicnode.com",
    "https://bsc-dataseed2.binance.org",
    "https://bsc-dataseed3.binance.org",
]

DEFILLAMA_YIELDS_URL = "https://yields.llama.fi/pools"
DEFILLAMA_PRICES_URL = "https://coins.llama.fi/prices/current"
DEFILLAMA_CHAIN = "BSC"
DEFILLAMA_PROJECTS: dict[str, str] = {
    "venus-core-pool": "venus",
    "aave-v3": "aave",
    "lista-lending": "lista",
    "lista-cdp": "lista",
}
# DeFiLlama reports some assets under their unwrapped symbols.
DEFILLAMA_SYMBOL_ALIASES: dict[str, list[str]] = {
    "WETH": ["ETH", "WETH"],
    "WBNB": ["WBNB", "BNB"],
    "BTCB": ["BTCB", "BTC"],
}

MAX_UINT256 = 2**256 - 1
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
