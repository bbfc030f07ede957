"""Monitoring exports."""

from perp_backtest.monitoring.audit import AuditLog

__all__ = ["AuditLog"]
