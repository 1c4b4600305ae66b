"""Platform health monitor."""

from predfusion.health.monitor import HealthMonitor

__all__ = ["HealthMonitor"]
