"""Command line interface for opbroker."""
