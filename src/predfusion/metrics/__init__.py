"""Polling metrics."""

from predfusion.metrics.polling import PlatformPollStats, PollStats

__all__ = ["PlatformPollStats", "PollStats"]
