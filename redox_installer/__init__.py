"""Redox OS disk installer."""

__version__ = "1.0.0"
