"""Cart shipping rate orchestration service."""

__version__ = "1.0.0"
