"""
Offline Cache Storage
Versioned cache stores keyed by request identity
"""

from .keys import request_key
from .store import CacheError, CacheStorage, CacheStore, CacheWriteError, QuotaExceededError

__all__ = [
    'CacheStorage',
    'CacheStore',
    'CacheError',
    'CacheWriteError',
    'QuotaExceededError',
    'request_key',
]
