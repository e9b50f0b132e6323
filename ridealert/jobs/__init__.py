"""Background jobs."""

from ridealert.jobs.stale_monitor import StaleAlertMonitor

__all__ = ["StaleAlertMonitor"]
