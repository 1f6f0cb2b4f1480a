"""Crawling, content reading and the extraction runner."""
