"""Collabstr profile scraper: listing crawl, detail enrichment and a local REST store."""

__version__ = "1.0.0"
