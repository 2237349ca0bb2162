"""
Input factory registry.

Inputs are registered explicitly at composition time instead of through
import side effects:

    registry = InputRegistry()
    register_mongodb_stream(registry)
    connector = registry.create("mongodb_stream", {"uri": ..., "database": ..., "collection": ...})
"""

from typing import Any, Callable, Dict, List, Mapping

from .config import MongoStreamConfig
from .connector import MongoStreamInput

MONGODB_STREAM_INPUT = "mongodb_stream"

InputFactory = Callable[[Mapping[str, Any]], Any]


class InputRegistry:
    """Name -> factory mapping for input connectors."""

    def __init__(self):
        self._factories: Dict[str, InputFactory] = {}

    def register(self, name: str, factory: InputFactory) -> None:
        if not name:
            raise ValueError("input name must not be empty")
        if name in self._factories:
            raise ValueError(f"input already registered: {name}")
        self._factories[name] = factory

    def create(self, name: str, conf: Mapping[str, Any]) -> Any:
        """
        Build an input from its raw configuration mapping.

        Raises:
            KeyError: If no input is registered under `name`
            pydantic.ValidationError: If `conf` is invalid for the input
        """
        if name not in self._factories:
            raise KeyError(f"unknown input: {name}")
        return self._factories[name](conf)

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories


def create_mongodb_stream(conf: Mapping[str, Any]) -> MongoStreamInput:
    return MongoStreamInput(MongoStreamConfig.model_validate(dict(conf)))


def register_mongodb_stream(registry: InputRegistry) -> None:
    registry.register(MONGODB_STREAM_INPUT, create_mongodb_stream)
