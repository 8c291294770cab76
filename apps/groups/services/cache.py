"""
Cache keys and invalidation for group and user representations.
"""

import logging
from typing import Iterable

from django.core.cache import cache
from django.dispatch import Signal

logger = logging.getLogger(__name__)

CLAN_LIST_KEY = 'clans:list'
FEDERATION_LIST_KEY = 'federations:list'

# Sent with ``keys=frozenset`` after stale entries were dropped
cache_invalidated = Signal()


def group_key(kind, group_id) -> str:
    return f'{kind}:{group_id}'


def user_key(user_id) -> str:
    return f'user:{user_id}'


def list_key(kind) -> str:
    return CLAN_LIST_KEY if kind == 'clan' else FEDERATION_LIST_KEY


def invalidate(keys: Iterable[str]) -> None:
    """Drop cached entries and tell receivers which keys went stale."""
    keys = frozenset(keys)
    if not keys:
        return
    cache.delete_many(list(keys))
    logger.debug("Invalidated %d cache keys", len(keys))
    cache_invalidated.send(sender=None, keys=keys)
