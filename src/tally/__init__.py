"""tally - time-bucketed revenue and subscription metrics."""

__version__ = "0.1.0"
