"""Polling engine and scheduler."""

from .monitor import MonitorEngine, TickResult
from .scheduler import PeriodicTask, TaskScheduler, read_all_venues

__all__ = ["MonitorEngine", "PeriodicTask", "TaskScheduler", "TickResult", "read_all_venues"]
