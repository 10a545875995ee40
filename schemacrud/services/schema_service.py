"""
Schema Service
===============
Entry point for schema retrieval:

    SchemaStore.load -> normalize_schema -> SchemaDef -> SchemaCache -> filter_schema
"""
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import ValidationError

from schemacrud.core.exceptions import SchemaMalformedError
from schemacrud.models.schema import SchemaDef
from schemacrud.services.schema_cache import SchemaCache
from schemacrud.services.schema_filter import FULL_CONTEXT, canonical_context, filter_schema, full_view
from schemacrud.services.schema_normalizer import normalize_schema
from schemacrud.services.schema_store import SchemaStore

RELATED_CONTEXTS = ("detail", "full")


class SchemaService:
    """Loads, normalizes, caches and context-filters schemas."""

    def __init__(self, store: Optional[SchemaStore] = None, cache: Optional[SchemaCache] = None):
        self.store = store or SchemaStore()
        self.cache = cache if cache is not None else SchemaCache()

    @staticmethod
    def _cache_name(model: str, connection: Optional[str]) -> str:
        return f"{connection}.{model}" if connection else model

    # ========================================================================
    # Definitions (full, typed)
    # ========================================================================

    def get_definition(self, model: str, connection: Optional[str] = None) -> SchemaDef:
        """Typed, normalized schema used for data operations."""
        name = self._cache_name(model, connection)
        cached = self.cache.get(name, FULL_CONTEXT)
        if cached is not None:
            return self._validate(cached, model)

        raw = self.store.load(model, connection)
        definition = self._validate(normalize_schema(raw), model)
        self.cache.put(name, FULL_CONTEXT, full_view(definition))
        logger.info(f"Schema '{model}' loaded ({len(definition.fields)} fields, "
                    f"{len(definition.relationships)} relationships)")
        return definition

    @staticmethod
    def _validate(data: Dict[str, Any], model: str) -> SchemaDef:
        try:
            return SchemaDef.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise SchemaMalformedError(
                f"Schema '{model}' is malformed at '{location}': {first.get('msg', str(e))}",
                model=model,
                field=location or None,
                operation="load_schema",
            ) from e

    # ========================================================================
    # Context views
    # ========================================================================

    def get_schema(
        self,
        model: str,
        context: Optional[str] = None,
        connection: Optional[str] = None,
        include_related: bool = False,
    ) -> Dict[str, Any]:
        """
        Context-filtered schema view.

        include_related embeds the list-context schemas of the detail child
        models under "related_schemas" (detail and full contexts only).
        """
        requested = (context or "").strip().lower()
        context = canonical_context(requested)
        if requested and requested != context:
            logger.debug(f"Schema context '{requested}' for '{model}' resolved to '{context}'")
        name = self._cache_name(model, connection)

        view = self.cache.get(name, context)
        if view is None:
            definition = self.get_definition(model, connection)
            view = filter_schema(definition, context)
            self.cache.put(name, context, view)
        else:
            definition = None

        if include_related and context in RELATED_CONTEXTS:
            definition = definition or self.get_definition(model, connection)
            view = {**view, "related_schemas": self._related_schemas(definition)}
        return view

    def _related_schemas(self, definition: SchemaDef) -> Dict[str, Any]:
        related: Dict[str, Any] = {}
        for detail in definition.details:
            if detail.model in related:
                continue
            related[detail.model] = self.get_schema(detail.model, "list", definition.connection)
        return related

    # ========================================================================
    # Reload
    # ========================================================================

    def reload(self, model: str, connection: Optional[str] = None) -> SchemaDef:
        """Drop cached entries and load the schema again from the store."""
        self.invalidate(model, connection)
        return self.get_definition(model, connection)

    def invalidate(self, model: str, connection: Optional[str] = None) -> None:
        self.cache.invalidate(self._cache_name(model, connection))

    def clear(self) -> None:
        self.cache.clear_all()
