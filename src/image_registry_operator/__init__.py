"""Image registry storage operator."""

__version__ = "0.1.0"
