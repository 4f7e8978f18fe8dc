"""
SyncExecutor: perform one queue item's remote call and normalize the outcome.

The executor is a pure request/response boundary: it resolves the adapter,
dispatches on the item's action, and turns every outcome into a SyncResult.
It never raises for adapter failures and never touches queue or log state;
the QueueProcessor owns those.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fieldsync.adapters.base import AdapterAuthError, RemoteNotFoundError
from fieldsync.adapters.registry import AdapterNotFoundError, AdapterRegistry
from fieldsync.models.queue import SyncAction, SyncQueueItem
from fieldsync.sync.backoff import is_terminal_message

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass
class SyncResult:
    """Outcome of one executor call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def is_terminal(self) -> bool:
        return self.error_kind == ErrorKind.TERMINAL

    @classmethod
    def ok(cls, data: Any) -> "SyncResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, kind: ErrorKind) -> "SyncResult":
        return cls(success=False, error=error, error_kind=kind)


class SyncExecutor:
    def __init__(self, registry: AdapterRegistry, timeout_seconds: Optional[float] = 30.0):
        """
        Args:
            registry: adapters by service name.
            timeout_seconds: upper bound on one adapter call; None disables it.
        """
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    async def execute(self, item: SyncQueueItem, data: Dict[str, Any]) -> SyncResult:
        """Run `item.action` against `item.target_service` with `data`."""
        try:
            adapter = self.registry.get(item.target_service)
        except AdapterNotFoundError as exc:
            return SyncResult.failure(str(exc), ErrorKind.TERMINAL)

        if item.action == SyncAction.CREATE:
            call = adapter.create(item.entity_type, data)
        elif item.action == SyncAction.UPDATE:
            call = adapter.update(item.entity_type, item.entity_id, data)
        elif item.action == SyncAction.DELETE:
            call = adapter.delete(item.entity_type, item.entity_id)
        else:
            return SyncResult.failure(f"Unknown action: {item.action}", ErrorKind.TERMINAL)

        try:
            if self.timeout_seconds:
                response = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            else:
                response = await call
        except asyncio.TimeoutError:
            return SyncResult.failure(
                f"{item.target_service} {item.action} timed out after {self.timeout_seconds:g}s",
                ErrorKind.RETRYABLE,
            )
        except (AdapterAuthError, RemoteNotFoundError) as exc:
            return SyncResult.failure(str(exc) or type(exc).__name__, ErrorKind.TERMINAL)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.debug("Adapter %s raised on item %s: %s", item.target_service, item.id, message)
            kind = ErrorKind.TERMINAL if is_terminal_message(message) else ErrorKind.RETRYABLE
            return SyncResult.failure(message, kind)

        return SyncResult.ok(response)
