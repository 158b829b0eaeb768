"""Paper copy-trading engine for observed on-chain wallet activity."""

__version__ = "0.1.0"
