"""Guild roster and performance synchronizer."""

__version__ = "1.0.0"
