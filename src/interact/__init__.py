"""Task execution state machine for a browser-automation agent."""

__version__ = "0.1.0"
