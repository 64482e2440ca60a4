"""Daily task recurrence and reset engine."""

__version__ = "0.1.0"
