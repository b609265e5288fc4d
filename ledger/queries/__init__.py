"""Report execution package."""

from ledger.queries.reports import ReportExecutor

__all__ = ["ReportExecutor"]
