"""Read/write access to the local records the queue and orchestrator sync."""
import logging
from typing import Any, Dict, Optional, Type

from sqlmodel import Session, SQLModel, select

from fieldsync.models.entities import InventoryItem, Project
from fieldsync.timeutil import utcnow

logger = logging.getLogger(__name__)

ENTITY_MODELS: Dict[str, Type[SQLModel]] = {
    "project": Project,
    "inventory_item": InventoryItem,
}


class EntityTypeError(ValueError):
    """Raised for an entity type that has no local table."""


class EntityStore:
    def __init__(self, engine, models: Optional[Dict[str, Type[SQLModel]]] = None):
        self.engine = engine
        self.models = models or ENTITY_MODELS

    def _model_for(self, entity_type: str) -> Type[SQLModel]:
        try:
            return self.models[entity_type]
        except KeyError:
            raise EntityTypeError(f"Unknown entity type: {entity_type}") from None

    def exists(self, entity_type: str, entity_id: int) -> bool:
        """False for unknown entity types as well as missing rows."""
        model = self.models.get(entity_type)
        if model is None:
            return False
        with Session(self.engine) as s:
            return s.get(model, entity_id) is not None

    def get(self, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        """Return the record as a plain dict, or None if it is gone."""
        model = self._model_for(entity_type)
        with Session(self.engine) as s:
            row = s.get(model, entity_id)
            return row.model_dump() if row is not None else None

    def record_remote_id(
        self, entity_type: str, entity_id: int, remote_key: str, remote_id: Any
    ) -> None:
        """
        Cache a remote id on the local record after a successful create.

        `remote_key` names a column pair on the model: "zoho_crm" writes
        zoho_crm_id and zoho_crm_sync_at.
        """
        model = self._model_for(entity_type)
        id_field, stamp_field = f"{remote_key}_id", f"{remote_key}_sync_at"
        if id_field not in model.model_fields:
            raise EntityTypeError(f"{entity_type} has no remote id column {id_field}")
        with Session(self.engine) as s:
            row = s.get(model, entity_id)
            if row is None:
                raise LookupError(f"{entity_type} {entity_id} not found")
            setattr(row, id_field, str(remote_id))
            setattr(row, stamp_field, utcnow())
            s.add(row)
            s.commit()
        logger.info("Linked %s %s to %s %s", entity_type, entity_id, remote_key, remote_id)

    def touch_sync(self, entity_type: str, entity_id: int, remote_key: str) -> None:
        """Refresh the sync timestamp after an update of an already-linked record."""
        model = self._model_for(entity_type)
        with Session(self.engine) as s:
            row = s.get(model, entity_id)
            if row is None:
                return
            setattr(row, f"{remote_key}_sync_at", utcnow())
            s.add(row)
            s.commit()

    def upsert_project_from_quote(self, quote_id: str, fields: Dict[str, Any]) -> int:
        """Create or update the Project imported from `quote_id`; returns its id."""
        with Session(self.engine) as s:
            existing = s.exec(
                select(Project).where(Project.quotewerks_id == quote_id)
            ).first()

            if existing:
                # Update scalar fields in-place (keeps same id and remote links)
                for k, v in fields.items():
                    setattr(existing, k, v)
                existing.updated_at = utcnow()
                s.add(existing)
                s.commit()
                return existing.id

            project = Project(quotewerks_id=quote_id, **fields)
            s.add(project)
            s.commit()
            s.refresh(project)
            logger.info("Imported quote %s as project %s", quote_id, project.id)
            return project.id
