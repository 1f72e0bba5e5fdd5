"""
Serialize a trainable model to a string and back.

The record is a JSON object with two fields: ``model`` holds the model's
topology and weights, ``trainingInfo`` holds the optimizer, loss and metrics
as JSON text of its own.
"""
import json
import logging

from . import training_info
from .environment import get_environment
from .errors import MalformedRecordError
from .io_handler import SerializeIOHandler

logger = logging.getLogger(__name__)

# Resolve the host when the codec is first imported.
ENVIRONMENT = get_environment()


async def serialize(model) -> str:
    """
    Serialize a model, including its training configuration, into a string.

    Args:
        model: A ``Sequential`` model, compiled or not

    Returns:
        JSON text of the serialized record
    """
    handler = SerializeIOHandler()
    await model.save(handler)

    record = {"model": handler.model, "trainingInfo": training_info.encode(model)}
    return json.dumps(record)


def parse_record(text: str) -> dict:
    try:
        record = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise MalformedRecordError(f"Serialized record is not valid JSON: {e}") from e
    if not isinstance(record, dict) or set(record) != {"model", "trainingInfo"}:
        raise MalformedRecordError(
            "Serialized record must be an object with exactly 'model' and 'trainingInfo'"
        )
    return record


async def deserialize(text: str):
    """
    Turn a string produced by ``serialize`` back into a trainable model.

    Returns:
        The model, compiled with the optimizer, loss and metrics it was
        serialized with (uncompiled if it was saved uncompiled)
    """
    record = parse_record(text)

    handler = SerializeIOHandler(record["model"])
    model = await ENVIRONMENT.library.load_model(handler)

    config = training_info.decode(record["trainingInfo"])
    if config is not None:
        model.compile(**config.as_compile_kwargs())
    logger.debug("Deserialized %s (compiled=%s)", type(model).__name__, config is not None)
    return model
