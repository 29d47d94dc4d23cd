"""Language server for Strudel mini-notation."""

__all__ = ["__version__"]

__version__ = "0.1.0"
