"""Fan-out read client over several BSC RPC endpoints."""

from __future__ import annotations

import asyncio
import random
from typing import Any, Callable, Sequence, TypeVar

import backoff
import requests
from eth_typing import URI
from web3 import Web3
from web3.exceptions import ProviderConnectionError, Web3RPCError

from ..logger import get_logger
from ..settings import AgentSettings

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that say nothing about the call itself, only about the endpoint.
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    ProviderConnectionError,
    Web3RPCError,
    requests.exceptions.RequestException,
    TimeoutError,
)


class ChainReadError(RuntimeError):
    """Raised when a read failed on every configured endpoint."""

    def __init__(self, label: str, errors: list[Exception]):
        self.label = label
        self.errors = errors
        summary = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        super().__init__(
            f"Read '{label}' failed on all {len(errors)} endpoint(s): {summary}"
        )


class ChainClient:
    """Reads go to the first healthy endpoint; transport failures fall through.

    Contract-level failures (reverts, bad output) propagate immediately since
    another endpoint would return the same answer.
    """

    def __init__(
        self,
        rpc_urls: Sequence[str],
        *,
        timeout: float = 15.0,
        max_calls: int = 5,
        rpc_delay: float = 0.05,
        rpc_jitter: float = 0.05,
    ):
        if not rpc_urls:
            raise ValueError("ChainClient requires at least one RPC url")
        self.rpc_urls = list(rpc_urls)
        self._endpoints: list[Web3] = [
            Web3(Web3.HTTPProvider(URI(url), request_kwargs={"timeout": timeout}))
            for url in self.rpc_urls
        ]
        self._rpc_sem = asyncio.Semaphore(max_calls)
        self._rpc_delay = rpc_delay
        self._rpc_jitter = rpc_jitter

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> ChainClient:
        return cls(
            settings.rpc_urls,
            timeout=settings.rpc_timeout,
            max_calls=settings.max_calls,
            rpc_delay=settings.rpc_delay,
            rpc_jitter=settings.rpc_jitter,
        )

    @property
    def primary(self) -> Web3:
        """Endpoint used for calldata encoding and transaction submission."""
        return self._endpoints[0]

    @backoff.on_exception(
        backoff.expo,
        (ProviderConnectionError,),
        max_tries=3,
        jitter=backoff.full_jitter,
    )
    async def _rpc(self, fn: Callable[[Web3], T], w3: Web3) -> T:
        """Throttle + backoff a single RPC."""
        async with self._rpc_sem:
            try:
                return await asyncio.to_thread(fn, w3)
            finally:
                delay = self._rpc_delay + random.random() * self._rpc_jitter
                if delay > 0:
                    await asyncio.sleep(delay)

    async def call(self, fn: Callable[[Web3], T], *, label: str = "rpc") -> T:
        """Run ``fn`` against each endpoint in turn until one succeeds."""
        errors: list[Exception] = []
        for url, w3 in zip(self.rpc_urls, self._endpoints):
            try:
                return await self._rpc(fn, w3)
            except TRANSPORT_ERRORS as e:
                logger.warning("RPC %s failed on %s: %s", label, url, e)
                errors.append(e)
        raise ChainReadError(label, errors)

    async def read(
        self, address: str, abi: list[dict], fn_name: str, *args: Any
    ) -> Any:
        """Call a view function on ``address``."""
        checksum = Web3.to_checksum_address(address)

        def _call(w3: Web3) -> Any:
            contract = w3.eth.contract(address=checksum, abi=abi)
            return getattr(contract.functions, fn_name)(*args).call()

        return await self.call(_call, label=f"{fn_name}@{checksum}")

    async def native_balance(self, address: str) -> int:
        checksum = Web3.to_checksum_address(address)
        return int(
            await self.call(
                lambda w3: w3.eth.get_balance(checksum), label=f"getBalance@{checksum}"
            )
        )

    def encode(
        self, address: str, abi: list[dict], fn_name: str, *args: Any
    ) -> str:
        """Encode calldata for ``fn_name``. Pure, no RPC round-trip."""
        contract = self.primary.eth.contract(
            address=Web3.to_checksum_address(address), abi=abi
        )
        return contract.encode_abi(abi_element_identifier=fn_name, args=list(args))
