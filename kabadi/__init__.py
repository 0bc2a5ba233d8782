"""Kabadi Man order tracking service."""

__version__ = "1.0.0"
