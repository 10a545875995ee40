"""
Schema Cache
=============
Two-tier cache of context-filtered schemas keyed by (model, context):

1. in-process dict (always on)
2. optional external Redis tier (SCHEMA_CACHE_ENABLED)

Redis failures are logged and ignored; the in-process tier keeps serving.
"""
import copy
import json
import threading
from typing import Any, Dict, Optional, Set, Tuple

import redis
from loguru import logger

from schemacrud.core.config import get_settings


def build_external_cache() -> Optional["redis.Redis"]:
    """Redis client for the external tier, or None when disabled."""
    settings = get_settings()
    if not settings.SCHEMA_CACHE_ENABLED:
        return None
    return redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)


class SchemaCache:
    """
    Per-(model, context) schema cache. Entries live until invalidated.

    Views are copied in and out, so callers may mutate what they get back.
    """

    def __init__(
        self,
        external: Optional[Any] = None,
        ttl: Optional[int] = None,
        prefix: Optional[str] = None,
    ):
        settings = get_settings()
        self.external = external
        self.ttl = ttl if ttl is not None else settings.SCHEMA_CACHE_TTL
        self.prefix = prefix if prefix is not None else settings.SCHEMA_CACHE_PREFIX
        self._local: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._contexts: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def make_key(self, model: str, context: str) -> str:
        return f"{self.prefix}{model}:{context}"

    # ========================================================================
    # Read / Write
    # ========================================================================

    def get(self, model: str, context: str) -> Optional[Dict[str, Any]]:
        entry = self._local.get((model, context))
        if entry is not None:
            logger.debug(f"Schema cache hit (memory): {model}:{context}")
            return copy.deepcopy(entry)

        if self.external is None:
            return None

        key = self.make_key(model, context)
        try:
            cached = self.external.get(key)
        except Exception as e:
            logger.warning(f"Schema cache read error ({key}): {e}")
            return None
        if cached is None:
            return None

        try:
            entry = json.loads(cached)
        except (TypeError, ValueError) as e:
            logger.warning(f"Schema cache entry {key} is unreadable, ignoring: {e}")
            return None

        logger.debug(f"Schema cache hit (external): {model}:{context}")
        self._store_local(model, context, entry)
        return entry

    def put(self, model: str, context: str, schema: Dict[str, Any]) -> None:
        self._store_local(model, context, schema)

        if self.external is None:
            return
        key = self.make_key(model, context)
        try:
            self.external.setex(key, self.ttl, json.dumps(schema, default=str))
            logger.debug(f"Schema cache set: {key} (ttl={self.ttl}s)")
        except Exception as e:
            logger.warning(f"Schema cache write error ({key}): {e}")

    def _store_local(self, model: str, context: str, schema: Dict[str, Any]) -> None:
        with self._lock:
            self._local[(model, context)] = copy.deepcopy(schema)
            self._contexts.setdefault(model, set()).add(context)

    # ========================================================================
    # Invalidation
    # ========================================================================

    def invalidate(self, model: str) -> None:
        """Drop every context entry of one model from both tiers."""
        with self._lock:
            contexts = self._contexts.pop(model, set())
            for context in contexts:
                self._local.pop((model, context), None)

        if self.external is not None:
            pattern = self.make_key(model, "*")
            try:
                keys = self.external.keys(pattern)
                if keys:
                    self.external.delete(*keys)
            except Exception as e:
                logger.warning(f"Schema cache invalidation error ({pattern}): {e}")

        logger.info(f"Schema cache invalidated for '{model}' ({len(contexts)} local entries)")

    def clear_all(self) -> None:
        with self._lock:
            count = len(self._local)
            self._local.clear()
            self._contexts.clear()

        if self.external is not None:
            pattern = f"{self.prefix}*"
            try:
                keys = self.external.keys(pattern)
                if keys:
                    self.external.delete(*keys)
            except Exception as e:
                logger.warning(f"Schema cache clear error ({pattern}): {e}")

        logger.info(f"Schema cache cleared ({count} local entries)")

    def __contains__(self, item: Tuple[str, str]) -> bool:
        return item in self._local

    def __len__(self) -> int:
        return len(self._local)
