"""Shared test fixtures for the Votifier relay test suite."""
