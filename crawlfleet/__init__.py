"""
crawlfleet

A fleet of independent crawl agents that share a visited-set and publish
extracted pages onto a durable outbound stream.
"""

__version__ = "1.0.0"
__description__ = "A distributed web crawler with robots-aware agents and at-least-once page publishing"
