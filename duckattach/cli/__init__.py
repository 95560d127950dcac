"""Command line interface for duckattach."""
