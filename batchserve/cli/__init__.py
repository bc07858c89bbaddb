"""Command line interface for BatchServe."""
