"""Scheduling of per-user syncs and daily statistics using APScheduler."""

from .scheduler import TickResult, UserScheduler

__all__ = ["TickResult", "UserScheduler"]
