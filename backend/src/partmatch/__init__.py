"""partmatch - tiered catalog matching for noisy line-item descriptions."""

__version__ = "0.1.0"
