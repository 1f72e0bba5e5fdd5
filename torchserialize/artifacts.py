"""
JSON-safe encoding of model artifacts.

The binary weight buffer is carried as base64 text; topology and weight
specs are already JSON-representable and pass through unchanged.
"""
import base64
import json
from typing import Any

from torchserialize.errors import MalformedRecordError
from torchserialize.layers import ModelArtifacts


def serialize(artifacts: ModelArtifacts) -> dict[str, Any]:
    """Turn model artifacts into a dict that ``json.dumps`` accepts."""
    weight_data = None
    if artifacts.weight_data is not None:
        weight_data = base64.b64encode(bytes(artifacts.weight_data)).decode("ascii")
    return {
        "modelTopology": artifacts.model_topology,
        "weightSpecs": artifacts.weight_specs,
        "weightData": weight_data,
        "format": artifacts.format,
        "generatedBy": artifacts.generated_by,
    }


def deserialize(obj: dict[str, Any] | str) -> ModelArtifacts:
    """
    Rebuild model artifacts from the output of ``serialize``.

    Also accepts that output as JSON text.
    """
    if isinstance(obj, str):
        try:
            obj = json.loads(obj)
        except json.JSONDecodeError as e:
            raise MalformedRecordError(f"Serialized model is not valid JSON: {e}") from e
    if not isinstance(obj, dict) or "modelTopology" not in obj:
        raise MalformedRecordError("Serialized model has no modelTopology")
    topology = obj["modelTopology"]
    if (
        not isinstance(topology, dict)
        or not isinstance(topology.get("class_name"), str)
        or not isinstance(topology.get("config"), dict)
    ):
        raise MalformedRecordError(
            "modelTopology must be an object with a class_name string and a config object"
        )
    weight_specs = obj.get("weightSpecs")
    if weight_specs is not None and not isinstance(weight_specs, list):
        raise MalformedRecordError("weightSpecs must be a list")

    weight_data = obj.get("weightData")
    if weight_data is not None:
        try:
            weight_data = base64.b64decode(weight_data, validate=True)
        except (ValueError, TypeError) as e:
            raise MalformedRecordError(f"Serialized weight data is not valid base64: {e}") from e

    return ModelArtifacts(
        model_topology=topology,
        weight_specs=weight_specs,
        weight_data=weight_data,
        format=obj.get("format"),
        generated_by=obj.get("generatedBy"),
    )
