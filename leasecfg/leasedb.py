"""Configuration and operational data store.

Configuration sections are pydantic models that register themselves under a
top-level key with :func:`register_leasedb_model`. The store keeps one
instance of the assembled root model, addressed with slash-separated paths
(``/reconciler/route_metric``). Operational data lives under ``/ops`` and is
created on demand.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from threading import Lock
from typing import Any

from pydantic import BaseModel, ConfigDict, create_model

logger = logging.getLogger(__name__)


class RootModelBuilder:
    """Singleton builder for the root configuration model."""

    _instance = None
    _lock = Lock()

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance.fields = {}
                    cls._instance.root_model = create_model("RootModel")
        return cls._instance

    def register_model(self, key: str, model: type[BaseModel]) -> None:
        """Register a model under ``key`` and rebuild the root model."""
        logger.debug("Registering model %s: %s", key, model.__name__)
        if key in self.fields and self.fields[key] is not model:
            raise ValueError(f"Key '{key}' is already registered.")
        self.fields[key] = model
        self.root_model = create_model(
            "RootModel",
            **{k: (field, None) for k, field in self.fields.items()},
        )

    def get_root_model(self) -> type[BaseModel]:
        return self.root_model


def register_leasedb_model(key: str):
    """Class decorator registering a configuration section under ``key``."""

    def decorator(cls):
        if not issubclass(cls, BaseModel):
            raise ValueError(f"Class {cls.__name__} must inherit from Pydantic's BaseModel.")
        RootModelBuilder().register_model(key, cls)
        return cls

    return decorator


@register_leasedb_model("ops")
class Operational(BaseModel):
    """Operational data model."""

    model_config = ConfigDict(extra="allow")


class LeaseDB:
    """Path addressed store with change subscriptions."""

    def __init__(self, conf: dict | None = None):
        root_model = RootModelBuilder().get_root_model()
        data = dict(conf or {})
        # Every registered section gets its defaults unless configured
        for key, model in RootModelBuilder().fields.items():
            if data.get(key) is None:
                data[key] = model()
        self.store = root_model(**data)
        self.subscribers = defaultdict(list)

    def dump(self) -> str:
        return self.store.model_dump_json(indent=4)

    def _walk(self, segments: list[str], create: bool) -> Any:
        current = self.store
        for segment in segments:
            if isinstance(current, dict):
                if segment not in current:
                    if not create:
                        raise KeyError(f"Path segment '{segment}' not found.")
                    current[segment] = {}
                current = current[segment]
            elif isinstance(current, list):
                try:
                    current = current[int(segment)]
                except (ValueError, IndexError) as e:
                    raise KeyError(f"Invalid index '{segment}' for list.") from e
            elif isinstance(current, BaseModel):
                if not hasattr(current, segment):
                    if create and type(current).model_config.get("extra") == "allow":
                        setattr(current, segment, {})
                    else:
                        raise KeyError(f"Field '{segment}' not found in {current.__class__.__name__}.")
                current = getattr(current, segment)
            else:
                raise KeyError(f"Cannot navigate field '{segment}' on a non-object value.")
        return current

    def get(self, key: str) -> Any:
        """Retrieve the value at a slash-separated path."""
        return self._walk(key.strip("/").split("/"), create=False)

    def _store(self, key: str, value: Any) -> None:
        *parents, last = key.strip("/").split("/")
        current = self._walk(parents, create=True)
        if isinstance(current, dict):
            current[last] = value
        elif isinstance(current, list):
            index = int(last)
            if index >= len(current):
                raise IndexError(f"Index {index} is out of range for list.")
            current[index] = value
        elif isinstance(current, BaseModel):
            if type(current).model_config.get("extra") == "allow" or hasattr(current, last):
                setattr(current, last, value)
            else:
                raise KeyError(f"Field '{last}' not found in {current.__class__.__name__}.")
        else:
            raise KeyError(f"Cannot set field '{last}' on a non-object value.")

    def set(self, key: str, value: Any) -> None:
        """Store a value and call synchronous subscribers."""
        self._store(key, value)
        for callback in self._callbacks(key):
            result = callback(key, value)
            if inspect.isawaitable(result):
                # Coroutine subscribers only run through publish()
                result.close()
                logger.warning("Asynchronous subscriber for %s skipped, use publish()", key)

    async def publish(self, key: str, value: Any) -> None:
        """Store a value and wait for every subscriber, sync or async."""
        self._store(key, value)
        logger.debug("Publishing %s", key)
        pending = []
        for callback in self._callbacks(key):
            result = callback(key, value)
            if inspect.isawaitable(result):
                pending.append(result)
        if pending:
            await asyncio.gather(*pending)

    def subscribe(self, pointer: str, callback: Callable[[str, Any], Any]) -> None:
        """Subscribe to changes at or below a path."""
        self.subscribers["/" + pointer.strip("/")].append(callback)

    def _callbacks(self, pointer: str) -> list:
        """Subscribers of the closest subscribed ancestor path."""
        ptr = "/" + pointer.strip("/")
        while ptr:
            if ptr in self.subscribers:
                return list(self.subscribers[ptr])
            ptr = ptr.rsplit("/", 1)[0]
        return []
