from __future__ import annotations

from .formatter import build_yields_table, format_cycle_report, format_yields_table

__all__ = ["build_yields_table", "format_cycle_report", "format_yields_table"]
