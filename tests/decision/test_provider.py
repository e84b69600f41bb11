from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from nectar_agent.decision import (
    ChatCompletionsDecisionProvider,
    DecisionContext,
    DecisionProviderError,
    validate_plan,
)
from nectar_agent.decision.provider import SYSTEM_PROMPT
from nectar_agent.domain import TokenBalance


@pytest.fixture
def provider():
    return ChatCompletionsDecisionProvider(
        api_url="https://llm.example/v1/chat/completions",
        api_key="sk-test",
        model="test-model",
    )


@pytest.fixture
def context():
    return DecisionContext(
        wallet_balances=[
            TokenBalance(
                "USDT",
                "0x55d398326f99059fF775485246999027B3197955",
                10**20,
                18,
                100.0,
            )
        ],
        positions=[],
        opportunities=[],
        risk_level="medium",
        estimated_gas_cost_usd=0.3,
    )


def _response(payload=None, text="", json_error=False):
    response = MagicMock()
    response.raise_for_status.return_value = None
    if json_error:
        response.json.side_effect = requests.exceptions.JSONDecodeError("bad", "", 0)
    else:
        response.json.return_value = payload
    response.text = text
    return response


@pytest.mark.asyncio
async def test_request_plan_returns_message_content(provider, context):
    content = '{"actions": [], "reasoning": "hold"}'
    response = _response({"choices": [{"message": {"content": content}}]})

    with patch(
        "nectar_agent.decision.provider.requests.post", return_value=response
    ) as post:
        raw = await provider.request_plan(context)

    assert raw == content
    kwargs = post.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["json"]["model"] == "test-model"
    assert kwargs["json"]["messages"][0]["content"] == SYSTEM_PROMPT
    assert '"walletBalances"' in kwargs["json"]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_request_plan_without_choices_returns_body(provider, context):
    response = _response({"error": "overloaded"})

    with patch("nectar_agent.decision.provider.requests.post", return_value=response):
        raw = await provider.request_plan(context)

    assert raw == {"error": "overloaded"}
    assert validate_plan(raw).actions[0].is_hold


@pytest.mark.asyncio
async def test_request_plan_with_non_json_body_returns_text(provider, context):
    response = _response(text="<html>bad gateway</html>", json_error=True)

    with patch("nectar_agent.decision.provider.requests.post", return_value=response):
        raw = await provider.request_plan(context)

    assert raw == "<html>bad gateway</html>"


@pytest.mark.asyncio
async def test_unreachable_provider_raises(provider, context):
    error = requests.exceptions.ConnectionError("connection refused")

    with (
        patch("nectar_agent.decision.provider.requests.post", side_effect=error),
        patch("asyncio.sleep", new_callable=AsyncMock),
        pytest.raises(DecisionProviderError, match="unreachable"),
    ):
        await provider.request_plan(context)


def test_context_payload_uses_provider_field_names(context):
    payload = DecisionContext(
        wallet_balances=context.wallet_balances,
        positions=[],
        opportunities=[],
        risk_level="low",
        recent_actions=["2h ago: supply 10 USDT on venus"],
        total_portfolio_value=100.0,
    ).to_payload()

    assert payload["walletBalances"] == [
        {"symbol": "USDT", "amount": "100", "valueUsd": 100.0}
    ]
    assert payload["riskLevel"] == "low"
    assert payload["recentActions"] == ["2h ago: supply 10 USDT on venus"]
    assert payload["totalPortfolioValue"] == 100.0
    assert "apyTrends" not in payload
    assert "estimatedGasCostUsd" not in payload
