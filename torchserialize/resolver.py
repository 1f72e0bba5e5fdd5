"""
Rebuild optimizers from a class name and a config.
"""
import logging
from typing import Any

from .errors import UnknownOptimizerClassError
from .optimizer import Optimizer
from .registry import SerializationMap

logger = logging.getLogger(__name__)


def resolve(
    class_name: str,
    config: dict[str, Any],
    registry: SerializationMap | None = None,
) -> Optimizer:
    """
    Instantiate the optimizer registered under ``class_name`` from ``config``.

    The registry entry's config parser is responsible for restoring both the
    hyperparameters and any state the optimizer accumulated while training.
    Custom optimizers must be registered with ``register_class`` in every
    process that deserializes them.

    Args:
        class_name: Registered class name, e.g. "Adam"
        config: Output of the optimizer's ``get_config``
        registry: Registry to look in; the global SerializationMap by default

    Raises:
        UnknownOptimizerClassError: No optimizer is registered under the name
    """
    registry = registry or SerializationMap.get_map()
    entry = registry.get(class_name)
    if entry is None or not issubclass(entry[0], Optimizer):
        raise UnknownOptimizerClassError(class_name, registry.names(Optimizer))

    constructor, parser = entry
    logger.debug("Resolving optimizer %s via %s", class_name, constructor.__qualname__)
    return parser(constructor, config)
