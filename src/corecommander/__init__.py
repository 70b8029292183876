"""Lifecycle controller for local consensus-node instances under test."""

__version__ = "0.1.0"
