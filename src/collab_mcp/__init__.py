"""Claim arbitration for concurrent editing sessions, served over MCP."""

__version__ = "0.4.0"

__all__ = ["__version__"]
