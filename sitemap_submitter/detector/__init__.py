"""Sitemap change detection."""
