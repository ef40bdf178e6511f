"""Buffered, reversible file editing keyed to conversation leaves."""

__version__ = "0.1.0"
