"""Safe multi-sig treasury tools: transaction proposals and hot wallet refills."""

__version__ = "0.1.0"
