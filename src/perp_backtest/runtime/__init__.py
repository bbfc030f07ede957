"""Run context and result persistence."""

from perp_backtest.runtime.context import RunContext, create_run_context
from perp_backtest.runtime.report import serialize_result, write_results

__all__ = [
    "RunContext",
    "create_run_context",
    "serialize_result",
    "write_results",
]
