"""Real-time multi-room chat coordinator."""

__version__ = "0.1.0"
