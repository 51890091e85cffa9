"""Crawl4AI backed site crawler."""
