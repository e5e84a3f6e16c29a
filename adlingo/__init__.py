"""
adlingo - quality-gated translation of marketing pages and image ads.
"""

__version__ = "0.1.0"
