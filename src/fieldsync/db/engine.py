"""SQLModel engine singleton."""
from sqlmodel import SQLModel, create_engine

from fieldsync.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # scheduler + API share the engine
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        # Import all models so metadata is populated before create_all
        from fieldsync.models.entities import InventoryItem, Project  # noqa
        from fieldsync.models.queue import SyncQueueItem  # noqa
        from fieldsync.models.sync import SyncLog, SyncMetrics  # noqa
        SQLModel.metadata.create_all(_engine)
    return _engine
