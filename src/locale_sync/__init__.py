"""Keep structured content records synchronized across language variants."""

__version__ = "0.1.0"
