"""Core settings and shared helpers."""
