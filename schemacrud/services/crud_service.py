"""
Generic CRUD Service
=====================
Record lifecycle for any schema-described model:

    access check -> DynamicModel -> one transaction:
        record mutation + relationship directives (+ detail cascade on delete)

IntegrityError becomes ConflictError, any other SQLAlchemyError becomes
InternalError; the transaction is rolled back in both cases.
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from schemacrud.core.exceptions import (
    ConflictError, ForbiddenError, InternalError, InvalidRequestError,
    RecordNotFoundError, SchemaNotFoundError,
)
from schemacrud.database.session import get_engine
from schemacrud.models.schema import ActionType, FieldType, SchemaDef
from schemacrud.schemas.crud import SprunjeQuery
from schemacrud.security.access import AccessGate
from schemacrud.security.password import hash_password, is_hashed
from schemacrud.services.dynamic_model import ONLY_TRASHED, DynamicModel, configure
from schemacrud.services.relationship_actions import PIVOT_TYPES, RelationshipActionProcessor
from schemacrud.services.schema_service import SchemaService
from schemacrud.services.sprunje import Sprunje


class CrudService:
    """Runs list / read / create / update / delete / restore / actions for one actor."""

    def __init__(
        self,
        schema_service: SchemaService,
        access_gate: AccessGate,
        actor_id: Any = None,
        processor: Optional[RelationshipActionProcessor] = None,
    ):
        self.schemas = schema_service
        self.gate = access_gate
        self.actor_id = actor_id
        self.processor = processor or RelationshipActionProcessor()

    # ========================================================================
    # Helpers
    # ========================================================================

    def authorize(self, definition: SchemaDef, action: str, permission: Optional[str] = None) -> str:
        """Ask the gate once; a denial becomes ForbiddenError before any mutation."""
        key = permission or definition.permission_for(action)
        if not self.gate.check_access(key):
            logger.warning(f"Forbidden: actor={self.actor_id} permission={key} model={definition.model}")
            raise ForbiddenError(
                f"Access denied: '{key}' is required to {action} {definition.model}",
                permission=key,
                model=definition.model,
                operation=action,
            )
        return key

    @contextmanager
    def transaction(self, definition: SchemaDef, operation: str) -> Iterator[Connection]:
        engine = get_engine(definition.connection)
        try:
            with engine.begin() as conn:
                yield conn
        except IntegrityError as e:
            logger.error(f"{operation} {definition.model} failed on a constraint: {e.orig}")
            raise ConflictError(
                f"Constraint violation during {operation} of {definition.model}: {e.orig}",
                model=definition.model,
                operation=operation,
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"{operation} {definition.model} failed: {e}")
            raise InternalError(
                f"Database error during {operation} of {definition.model}",
                model=definition.model,
                operation=operation,
            ) from e

    def _load(self, model: str):
        definition = self.schemas.get_definition(model)
        return definition, configure(definition)

    @staticmethod
    def _require(dm: DynamicModel, conn: Connection, record_id: Any, deleted: str = "exclude") -> Dict[str, Any]:
        record = dm.find(conn, record_id, deleted)
        if record is None:
            raise RecordNotFoundError(
                f"{dm.model} with {dm.primary_key}={record_id} not found",
                model=dm.model,
                operation="find",
            )
        return record

    def present(self, definition: SchemaDef, record: Dict[str, Any]) -> Dict[str, Any]:
        """Primary key plus detail-visible columns; hidden fields never leave the service."""
        visible = {definition.primary_key, *definition.viewable_fields}
        return {key: value for key, value in record.items() if key in visible}

    def _related_ids(self, conn: Connection, definition: SchemaDef, record_id: Any) -> Dict[str, List[Any]]:
        """Current ids for multi-value fields backed by a pivot relationship (role_ids -> roles)."""
        related = {}
        for name, field in definition.fields.items():
            if field.is_persisted or not field.viewable:
                continue
            relationship = definition.relationship_for_field(name)
            if relationship and relationship.type in PIVOT_TYPES and relationship.is_pivot_configured:
                related[name] = self.processor.current_ids(conn, relationship, record_id)
        return related

    def prepare_values(self, definition: SchemaDef, dm: DynamicModel, data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        values = dm.fill(data)

        for name, field in definition.fields.items():
            if field.type != FieldType.PASSWORD or name not in values:
                continue
            if values[name] in (None, ""):
                del values[name]
            elif not is_hashed(values[name]):
                values[name] = hash_password(str(values[name]))

        if creating:
            for name in dm.fillable:
                field = definition.fields[name]
                if name not in values and field.default is not None:
                    values[name] = dm.cast_value(name, field.default)
            missing = [
                name for name in dm.fillable
                if definition.fields[name].required and values.get(name) in (None, "")
            ]
            if missing:
                raise InvalidRequestError(
                    f"Missing required field(s) {missing} for {definition.model}",
                    model=definition.model,
                    field=missing[0],
                    operation="create",
                )
        return values

    # ========================================================================
    # Read
    # ========================================================================

    def list(self, model: str, request: Optional[SprunjeQuery] = None) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "read")
        with self.transaction(definition, "list") as conn:
            return Sprunje(dm).query(conn, request)

    def read(self, model: str, record_id: Any, deleted: str = "exclude") -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "read")
        with self.transaction(definition, "read") as conn:
            record = self._require(dm, conn, record_id, deleted)
            result = self.present(definition, record)
            result.update(self._related_ids(conn, definition, record[dm.primary_key]))
        return result

    # ========================================================================
    # Create / Update
    # ========================================================================

    def create(self, model: str, data: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "create")
        values = self.prepare_values(definition, dm, data, creating=True)

        with self.transaction(definition, "create") as conn:
            record_id = dm.insert(conn, values)
            self.processor.process(conn, definition, "on_create", record_id, data, self.actor_id, overrides)
            record = self._require(dm, conn, record_id)

        logger.info(f"Created {model}#{record_id} by {self.actor_id}")
        return self.present(definition, record)

    def update(
        self,
        model: str,
        record_id: Any,
        data: Dict[str, Any],
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "update")
        values = self.prepare_values(definition, dm, data, creating=False)

        with self.transaction(definition, "update") as conn:
            self._require(dm, conn, record_id)
            dm.update(conn, record_id, values)
            self.processor.process(conn, definition, "on_update", dm.cast_key(record_id), data, self.actor_id, overrides)
            record = self._require(dm, conn, record_id)

        logger.info(f"Updated {model}#{record_id} fields={list(values)} by {self.actor_id}")
        return self.present(definition, record)

    # ========================================================================
    # Delete / Restore
    # ========================================================================

    def delete(self, model: str, record_id: Any, permission: Optional[str] = None) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "delete", permission=permission)

        with self.transaction(definition, "delete") as conn:
            record = self._require(dm, conn, record_id)
            key = record[dm.primary_key]
            # Pivot rows go first so FK constraints never block the delete
            self.processor.process(conn, definition, "on_delete", key, record, self.actor_id)
            cascaded = self._cascade_details(conn, definition, key)
            if dm.soft_delete:
                dm.soft_delete_record(conn, key)
            else:
                dm.hard_delete(conn, key)

        logger.info(f"Deleted {model}#{record_id} (soft={dm.soft_delete}, cascaded={cascaded}) by {self.actor_id}")
        return {"id": key, "soft_deleted": dm.soft_delete, "cascaded": cascaded}

    def _cascade_details(self, conn: Connection, definition: SchemaDef, record_id: Any) -> Dict[str, int]:
        cascaded: Dict[str, int] = {}
        for detail in definition.details:
            if not detail.cascade_delete:
                continue
            if not detail.foreign_key:
                logger.warning(f"{definition.model}: detail '{detail.model}' has no foreign_key, cascade skipped")
                continue
            try:
                child = self.schemas.get_definition(detail.model)
            except SchemaNotFoundError:
                logger.warning(f"{definition.model}: detail schema '{detail.model}' not found, cascade skipped")
                continue
            if (child.connection or None) != (definition.connection or None):
                logger.warning(f"{definition.model}: detail '{detail.model}' uses another connection, cascade skipped")
                continue

            child_dm = configure(child)
            if not child_dm.has_column(detail.foreign_key):
                logger.warning(f"{definition.model}: '{detail.foreign_key}' is not a column of '{child.table}'")
                continue
            soft = detail.cascade_delete_mode != "hard" and definition.soft_delete and child.soft_delete
            cascaded[detail.model] = child_dm.delete_where(conn, detail.foreign_key, record_id, soft=soft)
        return cascaded

    def restore(self, model: str, record_id: Any) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "update")
        if not dm.soft_delete:
            raise InvalidRequestError(
                f"Model '{model}' does not support soft delete",
                model=model,
                operation="restore",
            )

        with self.transaction(definition, "restore") as conn:
            self._require(dm, conn, record_id, ONLY_TRASHED)
            dm.restore(conn, record_id)
            record = self._require(dm, conn, record_id)

        logger.info(f"Restored {model}#{record_id} by {self.actor_id}")
        return self.present(definition, record)

    # ========================================================================
    # Custom Actions
    # ========================================================================

    def run_action(self, model: str, record_id: Any, action_key: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        definition, dm = self._load(model)
        action = definition.action(action_key)
        if action is None:
            raise InvalidRequestError(
                f"Unknown action '{action_key}'",
                model=model,
                operation="action",
            )
        if action.type == ActionType.DELETE:
            return self.delete(model, record_id, permission=action.permission)
        if action.type != ActionType.FIELD_UPDATE:
            raise InvalidRequestError(
                f"Action '{action_key}' of type '{action.type.value}' is not executed server-side",
                model=model,
                operation="action",
            )

        self.authorize(definition, "update", permission=action.permission)
        field_name = action.field
        field = definition.field(field_name) if field_name else None
        if field is None or not field.is_persisted or not dm.has_column(field_name):
            raise InvalidRequestError(
                f"Action '{action_key}' targets unknown field '{field_name}'",
                model=model,
                field=field_name,
                operation="action",
            )

        payload = payload or {}
        with self.transaction(definition, "action") as conn:
            record = self._require(dm, conn, record_id)
            if action.toggle:
                value = not bool(record.get(field_name))
            elif field_name in payload:
                value = payload[field_name]
            elif action.value is not None:
                value = action.value
            else:
                raise InvalidRequestError(
                    f"Action '{action_key}' requires a value for '{field_name}'",
                    model=model,
                    field=field_name,
                    operation="action",
                )

            value = dm.cast_value(field_name, value)
            if field.type == FieldType.PASSWORD:
                if value in (None, ""):
                    raise InvalidRequestError(
                        "Password must not be empty", model=model, field=field_name, operation="action"
                    )
                value = hash_password(str(value))
            dm.update(conn, record_id, {field_name: value})
            record = self._require(dm, conn, record_id)

        logger.info(f"Action {action_key} on {model}#{record_id} set {field_name} by {self.actor_id}")
        return self.present(definition, record)

    # ========================================================================
    # Relationship surface
    # ========================================================================

    def attach(
        self,
        model: str,
        record_id: Any,
        relationship: str,
        ids: List[Any],
        pivot_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "update")
        with self.transaction(definition, "attach") as conn:
            record = self._require(dm, conn, record_id)
            key = record[dm.primary_key]
            count = self.processor.attach(conn, definition, relationship, key, ids, pivot_data, self.actor_id)
        logger.info(f"Attached {count} {relationship} to {model}#{record_id} by {self.actor_id}")
        return {"id": key, "relationship": relationship, "attached": count}

    def detach(self, model: str, record_id: Any, relationship: str, ids: List[Any]) -> Dict[str, Any]:
        definition, dm = self._load(model)
        self.authorize(definition, "update")
        with self.transaction(definition, "detach") as conn:
            record = self._require(dm, conn, record_id)
            key = record[dm.primary_key]
            count = self.processor.detach(conn, definition, relationship, key, ids)
        logger.info(f"Detached {count} {relationship} from {model}#{record_id} by {self.actor_id}")
        return {"id": key, "relationship": relationship, "detached": count}
