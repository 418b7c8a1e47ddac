"""PriceScout: multi-platform product search aggregation backend."""

__version__ = "0.1.0"
