"""Application state container."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .adapters.protocol_adapters import (
    BaseProtocolAdapter,
    Protocol,
    SendTx,
    build_protocol_adapters,
)
from .adapters.swap import PancakeSwapRouter
from .clients.chain import ChainClient
from .data.defillama import DefiLlamaClient, PriceBook
from .decision import BaseDecisionProvider, ChatCompletionsDecisionProvider
from .domain import AgentWallet, YieldOpportunity
from .events import EventLog
from .settings import AgentSettings
from .store import BasePortfolioStore, InMemoryPortfolioStore
from .tasks import BackgroundTasks
from .wallet import local_sender_factory

SenderFactory = Callable[[AgentWallet], SendTx]


@dataclass
class AgentState:
    """Mutable agent state shared across cycles."""

    running: bool = False
    latest_yields: list[YieldOpportunity] = field(default_factory=list)
    yields_updated_at: datetime | None = None
    # user_id -> end of the last cycle that moved funds
    last_rebalance_time: dict[str, datetime] = field(default_factory=dict)


@dataclass
class AppState:
    """Container for application-wide state and dependencies.

    Passed through the pipeline to avoid global state and enable testing.
    """

    settings: AgentSettings
    logger: logging.Logger
    store: BasePortfolioStore
    chain: ChainClient
    adapters: dict[Protocol, BaseProtocolAdapter]
    swapper: PancakeSwapRouter
    market: DefiLlamaClient
    prices: PriceBook
    events: EventLog
    tasks: BackgroundTasks
    provider: BaseDecisionProvider | None = None
    sender_factory: SenderFactory | None = None
    agent: AgentState = field(default_factory=AgentState)

    @classmethod
    def build(
        cls,
        settings: AgentSettings,
        logger: logging.Logger,
        *,
        store: BasePortfolioStore | None = None,
        provider: BaseDecisionProvider | None = None,
        sender_factory: SenderFactory | None = None,
    ) -> AppState:
        """Wire the default collaborators from ``settings``.

        A decision provider is only built when an API key is configured, and
        a signer only when a private key is.
        """
        chain = ChainClient.from_settings(settings)
        store = store if store is not None else InMemoryPortfolioStore()
        tasks = BackgroundTasks()

        if provider is None and settings.decision_api_key is not None:
            provider = ChatCompletionsDecisionProvider.from_settings(settings)
        if sender_factory is None and settings.private_key is not None:
            sender_factory = local_sender_factory(
                chain.primary,
                settings.private_key_required,
                receipt_timeout=settings.tx_receipt_timeout,
            )

        return cls(
            settings=settings,
            logger=logger,
            store=store,
            chain=chain,
            adapters=build_protocol_adapters(chain),
            swapper=PancakeSwapRouter(chain),
            market=DefiLlamaClient(timeout=settings.http_timeout),
            prices=PriceBook(),
            events=EventLog(settings.activity_buffer_size, store=store, tasks=tasks),
            tasks=tasks,
            provider=provider,
            sender_factory=sender_factory,
        )

    async def aclose(self) -> None:
        """Stop the agent and drain pending best-effort writes."""
        self.agent.running = False
        await self.tasks.drain(timeout=30)
