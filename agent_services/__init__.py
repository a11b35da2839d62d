"""Instance lifecycle orchestrator for disposable agent instances."""

__version__ = "0.1.0"
