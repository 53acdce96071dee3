"""Dual-tier fetch and client cache merge."""
