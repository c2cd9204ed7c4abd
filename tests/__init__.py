"""Tests for kgcr."""
