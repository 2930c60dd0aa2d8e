"""Pydantic schemas for API v2."""
