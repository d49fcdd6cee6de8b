"""Feature-oriented end-to-end test environments and polling wait conditions."""

__version__ = "0.1.0"
__all__ = ["action", "conditions", "env", "types", "wait"]