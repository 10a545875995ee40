"""
Relationship Action Processor
==============================
Executes attach / sync / detach directives against pivot tables for a record
lifecycle event (on_create / on_update / on_delete).

- Runs on the caller's connection, inside the caller's transaction: a failing
  directive (e.g. FK violation) propagates and rolls back the whole operation.
- Schema-declared directives run first, in declared order; request overrides
  for the same relationship are applied after them (last write wins).
- Malformed directives are logged and skipped individually.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import column, delete, insert, select, table
from sqlalchemy.engine import Connection

from schemacrud.core.exceptions import InvalidRequestError
from schemacrud.models.schema import (
    Directive, DirectiveType, LifecycleEvent, RelationshipDef, RelationshipType, SchemaDef,
)
from schemacrud.services.dynamic_model import utcnow
from schemacrud.services.schema_normalizer import normalize_directives

PIVOT_TYPES = {RelationshipType.MANY_TO_MANY, RelationshipType.MANY_TO_MANY_THROUGH}

# Special values resolved at execution time
TOKEN_NOW = "now"
TOKEN_CURRENT_USER = "current_user"
TOKEN_CURRENT_DATE = "current_date"


def _coerce_id(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return value


def _unique(ids: Iterable[Any]) -> List[Any]:
    seen = []
    for value in ids:
        value = _coerce_id(value)
        if value is None or value == "" or value in seen:
            continue
        seen.append(value)
    return seen


class RelationshipActionProcessor:
    """Pivot-table side effects of record lifecycle events."""

    def __init__(self, now_fn: Optional[Callable[[], datetime]] = None):
        self.now_fn = now_fn or utcnow

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def process(
        self,
        conn: Connection,
        definition: SchemaDef,
        event: str,
        record_id: Any,
        data: Optional[Dict[str, Any]] = None,
        actor_id: Any = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, int]:
        """
        Run every directive bound to the event. Returns counts of pivot rows
        attached and detached.
        """
        event = LifecycleEvent(event)
        data = data or {}
        stats = {"attached": 0, "detached": 0}

        for relationship in definition.relationships:
            directives = relationship.actions.get(event, [])
            if not directives:
                continue
            if not self._is_processable(definition, relationship, event):
                continue
            for directive in directives:
                self._execute(conn, definition, relationship, directive, record_id, data, actor_id, stats)

        for name, config in (overrides or {}).items():
            relationship = self._require_relationship(definition, name, operation=event.value)
            for directive in self._parse_overrides(definition, relationship, event, config):
                self._execute(conn, definition, relationship, directive, record_id, data, actor_id, stats)

        if stats["attached"] or stats["detached"]:
            logger.info(
                f"{definition.model}#{record_id} {event.value}: "
                f"{stats['attached']} pivot rows attached, {stats['detached']} detached"
            )
        return stats

    def _is_processable(self, definition: SchemaDef, relationship: RelationshipDef, event: LifecycleEvent) -> bool:
        if not relationship.name:
            logger.warning(f"Schema '{definition.model}': skipping {event.value} actions of an unnamed relationship")
            return False
        if relationship.type not in PIVOT_TYPES:
            logger.warning(
                f"Schema '{definition.model}': relationship '{relationship.name}' of type "
                f"'{relationship.type.value}' does not support pivot actions, skipping"
            )
            return False
        if not relationship.is_pivot_configured:
            logger.warning(
                f"Schema '{definition.model}': relationship '{relationship.name}' is missing "
                f"pivot_table / foreign_key / related_key, skipping {event.value} actions"
            )
            return False
        return True

    def _parse_overrides(
        self, definition: SchemaDef, relationship: RelationshipDef, event: LifecycleEvent, config: Any
    ) -> List[Directive]:
        if not self._is_processable(definition, relationship, event):
            raise InvalidRequestError(
                f"Relationship '{relationship.name}' does not support pivot actions",
                model=definition.model,
                relationship=relationship.name,
                operation="relationship_override",
            )
        where = f"{definition.model}.{relationship.name}.{event.value} override"
        return [Directive.model_validate(item) for item in normalize_directives(config, where=where)]

    def _execute(
        self,
        conn: Connection,
        definition: SchemaDef,
        relationship: RelationshipDef,
        directive: Directive,
        record_id: Any,
        data: Dict[str, Any],
        actor_id: Any,
        stats: Dict[str, int],
    ) -> None:
        where = f"{definition.model}.{relationship.name}"

        if directive.type == DirectiveType.ATTACH:
            related_id = self.resolve_token(directive.related_id, actor_id)
            if related_id is None:
                logger.warning(f"{where}: attach directive without a resolvable related_id, skipping")
                return
            pivot_data = self.resolve_pivot_data(directive.pivot_data, actor_id)
            stats["attached"] += self.attach_ids(conn, relationship, record_id, [related_id], pivot_data)

        elif directive.type == DirectiveType.SYNC:
            field = directive.field or relationship.sync_field
            if field not in data:
                logger.debug(f"{where}: sync field '{field}' not in input, skipping")
                return
            ids = data[field]
            if ids is None:
                ids = []
            elif isinstance(ids, str):
                ids = ids.split(",")
            elif not isinstance(ids, (list, tuple, set)):
                ids = [ids]
            pivot_data = self.resolve_pivot_data(directive.pivot_data, actor_id)
            attached, detached = self.sync_ids(conn, relationship, record_id, ids, pivot_data)
            stats["attached"] += attached
            stats["detached"] += detached

        elif directive.type == DirectiveType.DETACH:
            if directive.ids == "all":
                stats["detached"] += self.detach_ids(conn, relationship, record_id, None)
            elif isinstance(directive.ids, list):
                stats["detached"] += self.detach_ids(conn, relationship, record_id, directive.ids)
            else:
                logger.warning(f"{where}: detach directive needs 'all' or a list of ids, skipping")

    # ========================================================================
    # Tokens
    # ========================================================================

    def resolve_token(self, value: Any, actor_id: Any = None) -> Any:
        if value == TOKEN_NOW:
            return self.now_fn().strftime("%Y-%m-%d %H:%M:%S")
        if value == TOKEN_CURRENT_DATE:
            return self.now_fn().strftime("%Y-%m-%d")
        if value == TOKEN_CURRENT_USER:
            return actor_id
        return value

    def resolve_pivot_data(self, pivot_data: Dict[str, Any], actor_id: Any = None) -> Dict[str, Any]:
        return {key: self.resolve_token(value, actor_id) for key, value in (pivot_data or {}).items()}

    # ========================================================================
    # Pivot Operations
    # ========================================================================

    @staticmethod
    def _pivot(relationship: RelationshipDef, extra: Iterable[str] = ()):
        names = [relationship.foreign_key, relationship.related_key]
        names += [name for name in extra if name not in names]
        return table(relationship.pivot_table, *[column(name) for name in names])

    def current_ids(self, conn: Connection, relationship: RelationshipDef, record_id: Any) -> List[Any]:
        pivot = self._pivot(relationship)
        stmt = select(pivot.c[relationship.related_key]).where(pivot.c[relationship.foreign_key] == record_id)
        return [row[0] for row in conn.execute(stmt)]

    def attach_ids(
        self,
        conn: Connection,
        relationship: RelationshipDef,
        record_id: Any,
        ids: Iterable[Any],
        pivot_data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Insert missing (record, related) pairs. Existing pairs are left alone."""
        ids = _unique(ids)
        if not ids:
            return 0
        existing = set(self.current_ids(conn, relationship, record_id))
        new_ids = [related_id for related_id in ids if related_id not in existing]
        if not new_ids:
            return 0

        pivot_data = pivot_data or {}
        pivot = self._pivot(relationship, pivot_data.keys())
        rows = [
            {relationship.foreign_key: record_id, relationship.related_key: related_id, **pivot_data}
            for related_id in new_ids
        ]
        conn.execute(insert(pivot), rows)
        logger.debug(f"Attached {new_ids} to {relationship.pivot_table} for record {record_id}")
        return len(new_ids)

    def detach_ids(
        self,
        conn: Connection,
        relationship: RelationshipDef,
        record_id: Any,
        ids: Optional[Iterable[Any]] = None,
    ) -> int:
        """Delete pairs for the record; ids=None removes every pair."""
        pivot = self._pivot(relationship)
        stmt = delete(pivot).where(pivot.c[relationship.foreign_key] == record_id)
        if ids is not None:
            ids = _unique(ids)
            if not ids:
                return 0
            stmt = stmt.where(pivot.c[relationship.related_key].in_(ids))
        count = conn.execute(stmt).rowcount
        logger.debug(f"Detached {count} rows from {relationship.pivot_table} for record {record_id}")
        return count

    def sync_ids(
        self,
        conn: Connection,
        relationship: RelationshipDef,
        record_id: Any,
        ids: Iterable[Any],
        pivot_data: Optional[Dict[str, Any]] = None,
    ) -> tuple:
        """Make the pair set exactly ids; pairs present before and after are untouched."""
        desired = _unique(ids)
        current = self.current_ids(conn, relationship, record_id)
        to_detach = [related_id for related_id in current if related_id not in desired]
        to_attach = [related_id for related_id in desired if related_id not in current]

        detached = self.detach_ids(conn, relationship, record_id, to_detach) if to_detach else 0
        attached = self.attach_ids(conn, relationship, record_id, to_attach, pivot_data) if to_attach else 0
        return attached, detached

    # ========================================================================
    # Direct relationship surface ({ids: [...]})
    # ========================================================================

    def attach(
        self,
        conn: Connection,
        definition: SchemaDef,
        name: str,
        record_id: Any,
        ids: Iterable[Any],
        pivot_data: Optional[Dict[str, Any]] = None,
        actor_id: Any = None,
    ) -> int:
        relationship = self._require_pivot_relationship(definition, name, "attach")
        return self.attach_ids(conn, relationship, record_id, ids, self.resolve_pivot_data(pivot_data or {}, actor_id))

    def detach(self, conn: Connection, definition: SchemaDef, name: str, record_id: Any, ids: Iterable[Any]) -> int:
        relationship = self._require_pivot_relationship(definition, name, "detach")
        return self.detach_ids(conn, relationship, record_id, ids)

    def _require_relationship(self, definition: SchemaDef, name: str, operation: str) -> RelationshipDef:
        relationship = definition.relationship(name)
        if relationship is None:
            raise InvalidRequestError(
                f"Unknown relationship '{name}'",
                model=definition.model,
                relationship=name,
                operation=operation,
            )
        return relationship

    def _require_pivot_relationship(self, definition: SchemaDef, name: str, operation: str) -> RelationshipDef:
        relationship = self._require_relationship(definition, name, operation)
        if relationship.type not in PIVOT_TYPES or not relationship.is_pivot_configured:
            raise InvalidRequestError(
                f"Relationship '{name}' is not a configured pivot relationship",
                model=definition.model,
                relationship=name,
                operation=operation,
            )
        return relationship
