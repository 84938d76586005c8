"""Concerns & feedback operations portal."""
