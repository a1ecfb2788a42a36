"""Sitemap Submitter - push new sitemap URLs to search engine indexing APIs."""

__version__ = "0.1.0"
