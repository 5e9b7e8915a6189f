"""mockrig: a configurable HTTP mock server."""

__version__ = "0.1.0"
