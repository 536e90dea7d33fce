"""Date-effective salary rule evaluation and simulation engine."""

__version__ = "1.0.0"
