"""Event check-in backend: attendance state machine and live queries."""

__version__ = "1.0.0"
