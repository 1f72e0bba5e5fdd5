"""
IO handler that redirects a model's save and load into memory.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any

from .environment import LazyDependency, get_environment
from .errors import MissingModelError
from .layers import ModelArtifacts, ModelArtifactsInfo, SaveResult

logger = logging.getLogger(__name__)


def _json_length(value: Any) -> int:
    return 0 if value is None else len(json.dumps(value))


class SerializeIOHandler:
    """
    An IO handler that serializes a model into a JSON-safe object.

    Pass a serialized model to load it; otherwise the serialized model is
    stored in ``self.model`` once ``save`` completes.
    """

    def __init__(self, model: Any = None, codec: LazyDependency | None = None):
        self.model = model
        self._codec = codec

    async def _get_codec(self):
        codec = self._codec or get_environment().codec
        return await codec.get()

    async def save(self, model_artifacts: ModelArtifacts) -> SaveResult:
        codec = await self._get_codec()
        self.model = codec.serialize(model_artifacts)

        weight_data = model_artifacts.weight_data
        info = ModelArtifactsInfo(
            date_saved=datetime.now(timezone.utc),
            model_topology_type="JSON",
            model_topology_bytes=_json_length(model_artifacts.model_topology),
            weight_specs_bytes=_json_length(model_artifacts.weight_specs),
            weight_data_bytes=0 if weight_data is None else len(weight_data),
        )
        logger.debug(
            "Serialized model: topology %d bytes, weight specs %d bytes, weights %d bytes",
            info.model_topology_bytes,
            info.weight_specs_bytes,
            info.weight_data_bytes,
        )
        return SaveResult(model_artifacts_info=info)

    async def load(self) -> ModelArtifacts:
        if self.model is None:
            raise MissingModelError()
        codec = await self._get_codec()
        return codec.deserialize(self.model)
