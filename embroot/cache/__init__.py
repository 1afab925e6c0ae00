"""Build cache module.

This module handles:
- The local content-addressable artifact store
- Export/import of the whole store
- The optional HTTP remote backend
"""

from embroot.cache.remote import RemoteCache
from embroot.cache.store import BuildCache, CacheEntry, CacheError, CacheInfo

__all__ = ["BuildCache", "CacheEntry", "CacheError", "CacheInfo", "RemoteCache"]
