"""Command line interface for tally."""
