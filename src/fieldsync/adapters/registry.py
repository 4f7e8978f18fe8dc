"""
Adapter registry: logical service name -> adapter instance.

Populated once at startup (from settings.adapters or by hand in tests)
and passed to the executor and orchestrator. Looking up a name that was
never registered raises AdapterNotFoundError.
"""
import importlib
import logging
from typing import Dict, Iterator, Optional, Tuple

from fieldsync.adapters.base import ServiceAdapter
from fieldsync.config import Settings, get_settings

logger = logging.getLogger(__name__)


class AdapterNotFoundError(KeyError):
    """Raised when no adapter is registered under a service name."""

    def __str__(self) -> str:
        return f"Adapter not found for service '{self.args[0]}'"


class AdapterConfigError(RuntimeError):
    """Raised when a configured adapter import path cannot be loaded."""


class AdapterRegistry:
    def __init__(self, adapters: Optional[Dict[str, ServiceAdapter]] = None):
        self._adapters: Dict[str, ServiceAdapter] = dict(adapters or {})

    def register(self, service: str, adapter: ServiceAdapter) -> None:
        if service in self._adapters:
            logger.warning("Replacing adapter registered for %s", service)
        self._adapters[service] = adapter

    def get(self, service: str) -> ServiceAdapter:
        try:
            return self._adapters[service]
        except KeyError:
            raise AdapterNotFoundError(service) from None

    def __contains__(self, service: str) -> bool:
        return service in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    def items(self) -> Iterator[Tuple[str, ServiceAdapter]]:
        return iter(sorted(self._adapters.items()))


def build_registry(settings: Optional[Settings] = None) -> AdapterRegistry:
    """
    Instantiate every adapter named in settings.adapters.

    Each value is an import path of the form "package.module:ClassName";
    the class is constructed with no arguments and reads its own
    credentials.

    Raises:
        AdapterConfigError: if a path is malformed, the module cannot be
            imported, or the class is not a ServiceAdapter.
    """
    settings = settings or get_settings()
    registry = AdapterRegistry()
    for service, path in settings.adapters.items():
        registry.register(service, _load_adapter(service, path))
    if not len(registry):
        logger.warning("No sync adapters configured; queued items will fail")
    else:
        logger.info("Loaded sync adapters: %s", ", ".join(name for name, _ in registry.items()))
    return registry


def _load_adapter(service: str, path: str) -> ServiceAdapter:
    module_name, _, class_name = path.partition(":")
    if not module_name or not class_name:
        raise AdapterConfigError(
            f"Adapter path for '{service}' must look like 'package.module:ClassName', got '{path}'"
        )
    try:
        module = importlib.import_module(module_name)
        adapter_cls = getattr(module, class_name)
    except (ImportError, AttributeError) as exc:
        raise AdapterConfigError(f"Cannot load adapter '{path}' for '{service}': {exc}") from exc
    if not (isinstance(adapter_cls, type) and issubclass(adapter_cls, ServiceAdapter)):
        raise AdapterConfigError(f"'{path}' is not a ServiceAdapter subclass")
    return adapter_cls()
