"""Shared helpers for PageSentry."""
