"""Process bootstrap for the book-ticker exporter.

This package turns command-line arguments and environment variables
into an :class:`~app.config.ExporterConfig` and wires the feed
supervisor and the scrape endpoint together in :func:`~app.main.main`.
"""
