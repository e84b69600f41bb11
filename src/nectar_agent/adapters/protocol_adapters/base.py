from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, ClassVar

from web3 import Web3

from ...abi import load_erc20_abi
from ...clients.chain import ChainClient
from ...constants import BSC_ASSETS, MAX_UINT256
from ...logger import get_logger

logger = get_logger(__name__)


class Protocol(str, Enum):
    """Closed set of money markets the agent can move funds into."""

    VENUS = "venus"
    AAVE = "aave"
    LISTA = "lista"

    @classmethod
    def parse(cls, value: str) -> Protocol | None:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class TxRequest:
    """A transaction for the wallet to sign and broadcast."""

    to: str
    data: str
    value: int = 0


SendTx = Callable[[TxRequest], Awaitable[str]]


class UnsupportedAssetError(ValueError):
    """Raised when a protocol has no market for the requested asset."""

    def __init__(self, protocol: str, asset: str):
        self.protocol = protocol
        self.asset = asset
        super().__init__(f"{protocol} has no market for {asset}")


class BaseProtocolAdapter(ABC):
    """Abstract base class for protocol adapters.

    ``get_balance`` and ``get_apy`` are pure reads. ``supply`` and
    ``withdraw`` send at most one market transaction per call (plus an
    approval when the allowance is short) and return the market tx hash.
    """

    protocol: ClassVar[Protocol]

    def __init__(self, chain: ChainClient):
        self.chain = chain

    @property
    def adapter_name(self) -> str:
        return self.protocol.value

    @property
    @abstractmethod
    def supported_assets(self) -> list[str]:
        """Asset symbols this market accepts."""
        ...

    def supports(self, asset: str) -> bool:
        return asset in self.supported_assets

    @abstractmethod
    async def supply(self, asset: str, amount: int, wallet: str, send: SendTx) -> str:
        ...

    @abstractmethod
    async def withdraw(
        self, asset: str, amount: int, wallet: str, send: SendTx
    ) -> str:
        ...

    @abstractmethod
    async def get_balance(self, asset: str, wallet: str) -> int:
        """Underlying-denominated supplied balance, 0 for unsupported assets."""
        ...

    @abstractmethod
    async def get_apy(self, asset: str) -> float:
        """Current supply APY in percent, 0 for unsupported assets."""
        ...

    def _require_supported(self, asset: str) -> None:
        if not self.supports(asset):
            raise UnsupportedAssetError(self.adapter_name, asset)

    @staticmethod
    def underlying_address(asset: str) -> str:
        info = BSC_ASSETS.get(asset)
        if info is None:
            raise ValueError(f"Unknown asset '{asset}'")
        return Web3.to_checksum_address(info["address"])

    async def _ensure_allowance(
        self, token: str, spender: str, amount: int, wallet: str, send: SendTx
    ) -> str | None:
        """Approve ``spender`` for max uint256 when the allowance is short."""
        erc20_abi = load_erc20_abi()
        wallet = Web3.to_checksum_address(wallet)
        spender = Web3.to_checksum_address(spender)
        allowance = int(
            await self.chain.read(token, erc20_abi, "allowance", wallet, spender)
        )
        if allowance >= amount:
            return None

        data = self.chain.encode(token, erc20_abi, "approve", spender, MAX_UINT256)
        tx_hash = await send(TxRequest(to=token, data=data))
        logger.info(
            "[%s] Approved %s to spend %s (tx %s)",
            self.adapter_name,
            spender,
            token,
            tx_hash,
        )
        return tx_hash
