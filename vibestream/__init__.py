"""Multi-provider stream resolution service."""

__version__ = "0.3.0"
