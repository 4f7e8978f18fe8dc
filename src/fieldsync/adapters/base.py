"""
Remote service adapter contract.

One adapter per remote system (CRM, accounting, field service, quoting).
The sync core only ever talks to these four coroutines, so transport
details (HTTP clients, OAuth token refresh, rate limiting) stay inside
each implementation.

Adapters signal failure by raising. Anything derived from AdapterError is
understood by the queue processor; AdapterAuthError and RemoteNotFoundError
are never retried, every other exception is treated as transient.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict


class AdapterError(RuntimeError):
    """Base class for failures reported by a remote service adapter."""


class AdapterAuthError(AdapterError):
    """Credentials were rejected or lack permission. Not retryable."""


class RemoteNotFoundError(AdapterError):
    """The remote record addressed by the call does not exist. Not retryable."""


class ServiceAdapter(ABC):
    """
    Capability set every remote system must provide.

    `create` returns the remote response dict; the new record's id is
    expected under `id` unless the adapter documents another key
    (the accounting system uses `item_id` for items).
    """

    @abstractmethod
    async def create(self, entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a remote record of `entity_type` (remote module name) from `data`."""

    @abstractmethod
    async def update(
        self, entity_type: str, entity_id: Any, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Update the remote record `entity_id`."""

    @abstractmethod
    async def delete(self, entity_type: str, entity_id: Any) -> Dict[str, Any]:
        """Delete the remote record `entity_id`."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the remote API is reachable with the configured credentials."""


class QuoteSource(ABC):
    """Extra capability of the quoting system: read a quote to import it locally."""

    @abstractmethod
    async def get_quote(self, quote_id: str) -> Dict[str, Any]:
        """
        Fetch one quote.

        Returns:
            Dict with at least `name` and `status`; optionally `description`,
            `total`, `start_date`, `end_date`, `priority`.
        """
