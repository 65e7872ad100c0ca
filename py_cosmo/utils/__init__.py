"""Shared utilities: logging setup and seeded randomness."""
