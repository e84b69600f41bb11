from __future__ import annotations

from .protocol_adapters import PROTOCOL_ADAPTERS
from .swap import PancakeSwapRouter

__all__ = ["PROTOCOL_ADAPTERS", "PancakeSwapRouter"]
