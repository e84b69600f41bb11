"""Decision provider clients.

Providers return the raw, untrusted response. Callers must pass it through
``validate_plan`` before acting on it.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any

import backoff
import requests

from ..logger import get_logger
from ..settings import AgentSettings
from .context import DecisionContext

logger = get_logger(__name__)

SYSTEM_PROMPT = """\
You are NectarFi, a DeFi yield optimizer on BNB Chain. Your goal is to \
maximize supply APY across the Venus, Aave and Lista lending protocols and \
keep idle funds deployed.

Stablecoins: USDT, USDC, FDUSD, USD1
Majors: WETH, BTCB, WBNB

DECISION FRAMEWORK:
STEP 1 (Opportunities): review the yields, sorted by composite score. Pick the \
best opportunity for each idle token. If swapping first earns more, say so.
STEP 2 (Execution): deploy every idle token worth more than $1. Ignore dust \
under $1. Idle BNB is supplied as WBNB (the agent wraps it automatically and \
keeps 0.005 BNB for gas). Only swap when the APY gain is above 3%.
STEP 3 (Review): confirm idle funds are deployed and nothing better was missed.

Action types:
- "supply": deploy an idle token to a protocol.
- "withdraw": pull a position back to the wallet.
- "rebalance": move the SAME asset between protocols. Requires "fromProtocol".
- "swap_and_supply": swap via PancakeSwap then supply. Requires "fromAsset" \
and "asset". Put swap actions first.
- "hold": do nothing. Only when there is nothing worth deploying.

amountPercent is a number from 0 to 100: the share of the idle balance for \
supply and swap_and_supply, or of the source position for rebalance and \
withdraw.

Respond with JSON only:
{"actions": [{"type": "supply", "asset": "USDC", "protocol": "aave", \
"amountPercent": 100, "reason": "..."}], "reasoning": "STEP 1 (Opportunities): \
... STEP 2 (Execution): ... STEP 3 (Review): ..."}
"""


class DecisionProviderError(RuntimeError):
    """Raised when the decision provider cannot be reached at all."""


class BaseDecisionProvider(ABC):
    """Abstract base class for decision providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def request_plan(self, context: DecisionContext) -> Any:
        """Return the provider's raw plan for ``context``.

        Raises:
            DecisionProviderError: If the provider is unreachable
        """
        ...


def build_user_message(context: DecisionContext) -> str:
    payload = context.to_payload()
    return (
        "Portfolio state as JSON. Analyze it with the 3-step framework and "
        "decide what to do.\n\n" + json.dumps(payload, indent=2, default=str)
    )


class ChatCompletionsDecisionProvider(BaseDecisionProvider):
    """OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 1500,
        timeout: float = 60.0,
    ):
        self.api_url = api_url
        self._api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> ChatCompletionsDecisionProvider:
        return cls(
            api_url=settings.decision_api_url,
            api_key=settings.decision_api_key_required,
            model=settings.decision_model,
            temperature=settings.decision_temperature,
            max_tokens=settings.decision_max_tokens,
            timeout=settings.decision_timeout,
        )

    @property
    def provider_name(self) -> str:
        return f"chat_completions:{self.model}"

    @backoff.on_exception(
        backoff.expo,
        (requests.exceptions.RequestException, requests.exceptions.HTTPError),
        max_tries=4,
        giveup=lambda e: (
            isinstance(e, requests.exceptions.HTTPError)
            and e.response is not None
            and e.response.status_code not in {429, 500, 502, 503, 504}
        ),
        jitter=backoff.full_jitter,
    )
    async def _post(self, body: dict[str, Any]) -> requests.Response:
        response = await asyncio.to_thread(
            requests.post,
            self.api_url,
            json=body,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response

    async def request_plan(self, context: DecisionContext) -> Any:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_message(context)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }

        try:
            response = await self._post(body)
        except requests.exceptions.RequestException as e:
            raise DecisionProviderError(
                f"Decision provider {self.provider_name} unreachable: {e}"
            ) from e

        try:
            data = response.json()
        except json.JSONDecodeError:
            logger.warning("Decision provider returned non-JSON body")
            return response.text

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Decision provider response has no message content")
            return data
        logger.debug("Raw decision: %s", content)
        return content
