"""
adaptive_scraper - adaptive link discovery and article extraction.
"""

__version__ = "0.1.0"
