"""Command line tool for kgcr."""
