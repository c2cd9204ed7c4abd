"""Tests for the kgcr command line tool."""
