"""Catalog of Ableton Live Sets: crawl, parse, merge, and find duplicates."""

__version__ = "0.1.0"
