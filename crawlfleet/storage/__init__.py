"""
Storage layer: the shared visited-URL store and the downstream page store.
"""

from .dedup_store import DedupStore, RedisDedupStore, MemoryDedupStore
from .page_store import PageStore

__all__ = ['DedupStore', 'RedisDedupStore', 'MemoryDedupStore', 'PageStore']
