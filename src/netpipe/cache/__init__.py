"""Bounded, TTL-aware result caching for netpipe.

This package provides :class:`TTLCache`, an in-memory least-recently-used
cache whose entries expire a fixed time after insertion and whose contents
can be snapshotted to a JSON file and restored in a later process.

The cache is consumed by :class:`~netpipe.client.pipeline.RequestPipeline`
for typed GET results and is configured through the ``cache`` section of
the global configuration (:class:`~netpipe.models.CacheConfig`).
"""

from netpipe.cache.cache import CacheEntry, KeyTracker, TTLCache

__all__ = ["CacheEntry", "KeyTracker", "TTLCache"]
