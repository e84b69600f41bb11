from __future__ import annotations

from .pancakeswap import NoLiquidityError, PancakeSwapRouter

__all__ = ["NoLiquidityError", "PancakeSwapRouter"]
