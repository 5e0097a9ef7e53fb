"""Core infrastructure: settings, logging, caching, rate limiting, metrics."""
