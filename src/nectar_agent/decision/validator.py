"""Decoding of untrusted decision-provider output into plan actions.

This is the only path from provider output to fund-moving code. It never
raises: anything it cannot make sense of degrades to a single hold.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, Mapping

from ..adapters.protocol_adapters import KNOWN_PROTOCOLS
from ..constants import BSC_ASSETS, NATIVE_SYMBOL
from ..logger import get_logger
from .models import ActionType, DecisionPlan, InvestmentAction

logger = get_logger(__name__)

MAX_PLAN_ACTIONS = 20
MAX_RAW_REASONING_CHARS = 4000
MAX_REASON_CHARS = 500

DEFAULT_REASONING = "No reasoning provided."
NO_VALID_ACTIONS_REASON = "No valid actions from AI"
UNPARSEABLE_REASON = "AI response was not parseable"
NOT_AN_OBJECT_REASON = "AI response was not a JSON object"

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_ACTION_TYPES = {t.value: t for t in ActionType}
_ASSET_LOOKUP = {s.upper(): s for s in [*BSC_ASSETS, NATIVE_SYMBOL]}


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def parse_percent(value: Any) -> int:
    """Parse a percentage the way a human would read it.

    ``"87.5%"`` -> 88, ``"abc"`` -> 0, ``250`` -> 100, ``-3`` -> 0.
    Halves round up.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(str(value).strip().rstrip("%").strip())
    except (ValueError, OverflowError):
        return 0
    if math.isnan(number):
        return 0
    number = max(0.0, min(100.0, number))
    return int(math.floor(number + 0.5))


def _canonical_asset(value: str) -> str:
    value = value.strip()
    return _ASSET_LOOKUP.get(value.upper(), value)


def _canonical_protocol(value: str) -> str:
    return value.strip().lower()


def _decode_action(raw: Any) -> InvestmentAction | None:
    if not isinstance(raw, Mapping):
        logger.warning("Dropping non-object plan action: %r", raw)
        return None

    type_name = _as_str(raw.get("type"), "hold").strip().lower()
    action_type = _ACTION_TYPES.get(type_name)
    if action_type is None:
        logger.warning("Dropping action with unknown type %r", type_name)
        return None

    protocol = _canonical_protocol(_as_str(raw.get("protocol")))
    if action_type is not ActionType.HOLD and protocol not in KNOWN_PROTOCOLS:
        logger.warning(
            "Dropping %s action with unknown protocol %r", type_name, protocol
        )
        return None

    from_protocol = _as_str(_first(raw, "fromProtocol", "from_protocol"))
    from_asset = _as_str(_first(raw, "fromAsset", "from_asset"))
    return InvestmentAction(
        type=action_type,
        asset=_canonical_asset(_as_str(raw.get("asset"))),
        protocol=protocol,
        amount_percent=parse_percent(_first(raw, "amountPercent", "amount_percent")),
        reason=_as_str(raw.get("reason"))[:MAX_REASON_CHARS],
        from_protocol=_canonical_protocol(from_protocol) or None,
        from_asset=_canonical_asset(from_asset) or None,
    )


def _decode_plan(raw: Any) -> DecisionPlan:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        try:
            raw = json.loads(_strip_fences(raw))
        except json.JSONDecodeError:
            logger.error("Failed to parse decision JSON, returning hold")
            return DecisionPlan(
                actions=[InvestmentAction.hold(UNPARSEABLE_REASON)],
                reasoning=raw.strip()[:MAX_RAW_REASONING_CHARS] or DEFAULT_REASONING,
            )

    if not isinstance(raw, Mapping):
        logger.error(
            "Decision is a %s, not an object; returning hold", type(raw).__name__
        )
        return DecisionPlan(
            actions=[InvestmentAction.hold(NOT_AN_OBJECT_REASON)],
            reasoning=DEFAULT_REASONING,
        )

    raw_actions = raw.get("actions")
    if not isinstance(raw_actions, list):
        raw_actions = []

    actions = [a for a in map(_decode_action, raw_actions) if a is not None]
    if len(actions) > MAX_PLAN_ACTIONS:
        logger.warning(
            "Plan has %d actions, keeping the first %d", len(actions), MAX_PLAN_ACTIONS
        )
        actions = actions[:MAX_PLAN_ACTIONS]
    if not actions:
        actions = [InvestmentAction.hold(NO_VALID_ACTIONS_REASON)]

    reasoning = _as_str(raw.get("reasoning")).strip() or DEFAULT_REASONING
    return DecisionPlan(actions=actions, reasoning=reasoning)


def validate_plan(raw: Any) -> DecisionPlan:
    """Decode a raw provider response into a safe ``DecisionPlan``.

    Accepts a JSON string (optionally wrapped in markdown code fences), an
    already-decoded mapping, or anything else. The result always holds
    between 1 and ``MAX_PLAN_ACTIONS`` actions, each with a known type,
    a known protocol unless it is a hold, and an integer percent in [0, 100].
    """
    try:
        return _decode_plan(raw)
    except Exception:
        logger.exception("Unexpected error validating decision; returning hold")
        return DecisionPlan(
            actions=[InvestmentAction.hold(UNPARSEABLE_REASON)],
            reasoning=DEFAULT_REASONING,
        )
