"""Sentinel command-line interface (``sentinel``)."""
