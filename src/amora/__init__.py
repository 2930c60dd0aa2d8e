"""Amora - matching and chat backend for the Amora dating app."""

__version__ = "0.1.0"
