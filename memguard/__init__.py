"""Simulated guarded heap for tests: leak detection, overrun checks and forced allocation failures."""

__version__ = "0.1.0"
__all__ = ["config", "heap"]