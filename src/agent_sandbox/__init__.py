"""Task security and execution sandbox for a browser automation agent."""

__version__ = "0.1.0"
