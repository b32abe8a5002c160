"""Route group exports."""

from . import collectors, health, routes, tasks

__all__ = ["collectors", "health", "routes", "tasks"]
