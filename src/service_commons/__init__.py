"""Utilities shared by the marketplace services."""
