"""Income-tax return filing wizard."""

__version__ = "0.1.0"
