"""
Process-wide class registry for serializable objects.

Classes register themselves under a string class name together with a config
parser. Deserialization looks the name up and hands the parser the stored
config, so a serialized object only ever carries a name and plain data.
"""
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

ConfigParser = Callable[[type, dict[str, Any]], Any]


class Serializable:
    """
    Mixin for objects that can be described by a class name and a config dict.

    Subclasses override ``get_config`` and, when their constructor does not
    accept the config keys directly, ``from_config``.
    """

    class_name: str | None = None

    @classmethod
    def get_class_name(cls) -> str:
        # Only a name set on the class itself counts; subclasses get their own.
        return cls.__dict__.get("class_name") or cls.__name__

    def get_config(self) -> dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_config(cls, config: dict[str, Any]):
        return cls(**config)


def default_config_parser(constructor: type, config: dict[str, Any]):
    """Build an instance through the class's own ``from_config``."""
    return constructor.from_config(config)


class SerializationMap:
    """Mapping from class name to a ``(constructor, config_parser)`` pair."""

    _instance: "SerializationMap | None" = None

    def __init__(self):
        self.class_name_map: dict[str, tuple[type, ConfigParser]] = {}

    @classmethod
    def get_map(cls) -> "SerializationMap":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def register(
        self,
        class_name: str,
        constructor: type,
        parser: ConfigParser = default_config_parser,
    ) -> None:
        if class_name in self.class_name_map:
            logger.debug("Replacing registry entry for %s", class_name)
        self.class_name_map[class_name] = (constructor, parser)

    def get(self, class_name: str) -> tuple[type, ConfigParser] | None:
        return self.class_name_map.get(class_name)

    def names(self, base: type | None = None) -> list[str]:
        """Registered class names, optionally only those subclassing ``base``."""
        return sorted(
            name
            for name, (constructor, _) in self.class_name_map.items()
            if base is None or issubclass(constructor, base)
        )


def register_class(
    cls: type | None = None,
    *,
    name: str | None = None,
    parser: ConfigParser = default_config_parser,
):
    """
    Register a Serializable class in the global SerializationMap.

    Usage:
        @register_class
        class MyOptimizer(Optimizer):
            ...

        @register_class(name="Custom", parser=my_parser)
        class Other(Optimizer):
            ...
    """
    def decorator(target: type) -> type:
        if name is not None:
            target.class_name = name
        class_name = target.get_class_name()
        SerializationMap.get_map().register(class_name, target, parser)
        return target

    if cls is not None:
        return decorator(cls)
    return decorator
