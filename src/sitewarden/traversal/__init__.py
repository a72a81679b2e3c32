"""Bounded crawl: link discovery, queue bookkeeping and pagination."""

from sitewarden.traversal.engine import TraversalEngine, normalize_link

__all__ = ["TraversalEngine", "normalize_link"]
