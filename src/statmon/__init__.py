"""statmon: database statistics sampling, delta and archive engine."""

__version__ = "0.4.0"
