"""Utility modules for revstore."""
