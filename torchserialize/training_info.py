"""
Encoding of the training configuration a model needs to resume training.

The optimizer travels as its registered class name plus its config (which
includes accumulated state such as step counters and moment estimates);
the loss and metrics travel as the identifiers the model was compiled with.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any

from .errors import MalformedRecordError
from .optimizer import Optimizer
from .resolver import resolve

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("optimizerName", "optimizerConfig", "loss", "metrics")


@dataclass
class TrainingConfig:
    optimizer: Optimizer
    loss: str | dict[str, Any]
    metrics: list[str]

    def as_compile_kwargs(self) -> dict[str, Any]:
        return {"optimizer": self.optimizer, "loss": self.loss, "metrics": self.metrics}


def encode(model) -> str:
    """
    Serialize a model's optimizer, loss and metrics to JSON text.

    A model that was never compiled has no training configuration and
    encodes as ``null``.
    """
    optimizer = model.optimizer
    if optimizer is None:
        return json.dumps(None)

    info = {
        # The class name is what finds the constructor again on decode.
        "optimizerName": optimizer.get_class_name(),
        "optimizerConfig": optimizer.get_config(),
        "loss": model.loss,
        "metrics": list(model.metrics),
    }
    return json.dumps(info)


def _check_types(info: dict[str, Any]) -> None:
    if not isinstance(info["optimizerName"], str):
        raise MalformedRecordError("optimizerName must be a string")
    if not isinstance(info["optimizerConfig"], dict):
        raise MalformedRecordError("optimizerConfig must be an object")
    if not isinstance(info["loss"], (str, dict)):
        raise MalformedRecordError("loss must be a string or an object")
    metrics = info["metrics"]
    if not isinstance(metrics, list) or not all(isinstance(m, str) for m in metrics):
        raise MalformedRecordError("metrics must be a list of strings")


def decode(text: str) -> TrainingConfig | None:
    """
    Parse training info produced by ``encode``.

    Returns:
        The optimizer (rebuilt through the class registry), loss and metrics,
        or None for a model that was saved uncompiled

    Raises:
        MalformedRecordError: The text is not valid training info
        UnknownOptimizerClassError: The optimizer class is not registered
    """
    try:
        info = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise MalformedRecordError(f"Training info is not valid JSON: {e}") from e

    if info is None:
        return None
    if not isinstance(info, dict):
        raise MalformedRecordError(
            f"Training info must be a JSON object, got {type(info).__name__}"
        )
    missing = [name for name in REQUIRED_FIELDS if name not in info]
    if missing:
        raise MalformedRecordError(f"Training info is missing fields: {', '.join(missing)}")
    _check_types(info)

    try:
        optimizer = resolve(info["optimizerName"], info["optimizerConfig"])
    except (TypeError, ValueError, KeyError) as e:
        raise MalformedRecordError(
            f"Invalid config for optimizer '{info['optimizerName']}': {e}"
        ) from e
    logger.debug("Decoded training info with optimizer %r", optimizer)
    return TrainingConfig(
        optimizer=optimizer,
        loss=info["loss"],
        metrics=list(info["metrics"]),
    )
