from __future__ import annotations

from .base import BasePortfolioStore
from .memory import InMemoryPortfolioStore

__all__ = ["BasePortfolioStore", "InMemoryPortfolioStore"]
