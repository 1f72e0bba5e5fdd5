"""
A small Keras-style model layer over torch.nn.

Models are built from registered layers, compiled with a serializable
optimizer plus loss and metric identifiers, and persisted through an IO
handler: ``model.save(handler)`` hands the handler the model's topology and
weights, ``load_model(handler)`` rebuilds a model from what the handler
returns.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

import numpy as np
import torch
import torch.nn as nn
from jaxtyping import Float
from torch import Tensor

from .nn_utils import get_activation, get_loss, get_metric
from .optimizer import Optimizer, get_optimizer
from .registry import Serializable, SerializationMap, register_class

logger = logging.getLogger(__name__)


@dataclass
class ModelArtifacts:
    """Topology and weights of a model, independent of its training config."""

    model_topology: dict[str, Any] | None = None
    weight_specs: list[dict[str, Any]] | None = None
    weight_data: bytes | None = None
    format: str | None = None
    generated_by: str | None = None


@dataclass
class ModelArtifactsInfo:
    date_saved: datetime
    model_topology_type: str
    model_topology_bytes: int = 0
    weight_specs_bytes: int = 0
    weight_data_bytes: int = 0


@dataclass
class SaveResult:
    model_artifacts_info: ModelArtifactsInfo
    errors: list[str] = field(default_factory=list)


class IOHandler(Protocol):
    """What ``Sequential.save`` and ``load_model`` need from a handler."""

    async def save(self, model_artifacts: ModelArtifacts) -> SaveResult: ...

    async def load(self) -> ModelArtifacts: ...


@dataclass
class History:
    """Per-epoch loss and metric values recorded by ``fit``."""

    epoch: list[int] = field(default_factory=list)
    history: dict[str, list[float]] = field(default_factory=dict)

    def record(self, epoch: int, logs: dict[str, float]) -> None:
        self.epoch.append(epoch)
        for key, value in logs.items():
            self.history.setdefault(key, []).append(value)


def _to_tensor(x) -> Tensor:
    if isinstance(x, Tensor):
        return x.detach().to(torch.float32)
    return torch.as_tensor(np.asarray(x), dtype=torch.float32)


@register_class
class Dense(nn.Module, Serializable):
    """
    Densely-connected layer: ``activation(x @ kernel + bias)``.

    The kernel has shape (input_dim, units). Its parameters are created once
    the input dimension is known, either from ``input_shape`` or when the
    layer is added after another layer.
    """

    def __init__(
        self,
        units: int,
        input_shape: Sequence[int] | None = None,
        activation: str | None = None,
        use_bias: bool = True,
        name: str | None = None,
    ):
        super().__init__()
        if units <= 0:
            raise ValueError(f"Invalid number of units: {units}")
        self.units = units
        self.input_shape = list(input_shape) if input_shape is not None else None
        self.activation = activation
        self.use_bias = use_bias
        self.name = name
        self._activation_fn = get_activation(activation)
        self.kernel: nn.Parameter | None = None
        self.bias: nn.Parameter | None = None
        if self.input_shape is not None:
            self.build(self.input_shape[-1])

    @property
    def built(self) -> bool:
        return self.kernel is not None

    def build(self, input_dim: int) -> None:
        self.kernel = nn.Parameter(torch.empty(input_dim, self.units))
        nn.init.kaiming_uniform_(self.kernel, a=5**0.5)
        if self.use_bias:
            self.bias = nn.Parameter(torch.zeros(self.units))

    def forward(self, x: Float[Tensor, "... d_in"]) -> Float[Tensor, "... units"]:
        output = x @ self.kernel
        if self.bias is not None:
            output = output + self.bias
        return self._activation_fn(output)

    def get_weights(self) -> list[np.ndarray]:
        return [p.detach().cpu().numpy().copy() for p in self.parameters()]

    def set_weights(self, weights: Sequence) -> None:
        params = list(self.parameters())
        if len(weights) != len(params):
            raise ValueError(
                f"Layer {self.name or 'dense'} expects {len(params)} weights, "
                f"got {len(weights)}"
            )
        with torch.no_grad():
            for param, value in zip(params, weights):
                value = _to_tensor(value)
                if tuple(value.shape) != tuple(param.shape):
                    raise ValueError(
                        f"Weight shape mismatch: expected {tuple(param.shape)}, "
                        f"got {tuple(value.shape)}"
                    )
                param.copy_(value)

    def get_config(self) -> dict[str, Any]:
        return {
            "units": self.units,
            "input_shape": self.input_shape,
            "activation": self.activation,
            "use_bias": self.use_bias,
            "name": self.name,
        }


@register_class
class Sequential(nn.Module, Serializable):
    """
    Linear stack of layers.

    ``compile`` attaches an optimizer, loss and metrics; only then can the
    model be trained with ``fit``. ``loss`` and ``metrics`` keep the
    identifiers they were compiled with so they can be serialized.
    """

    def __init__(self, layers: Sequence[nn.Module] | None = None, name: str | None = None):
        super().__init__()
        self.name = name
        self.layers = nn.ModuleList()
        self.optimizer: Optimizer | None = None
        self.loss: str | dict[str, Any] | None = None
        self.metrics: list[str] = []
        self._loss_fn = None
        self._metric_fns: dict[str, Any] = {}
        for layer in layers or []:
            self.add(layer)

    def add(self, layer: nn.Module) -> None:
        if not layer.built:
            if len(self.layers) == 0:
                raise ValueError(
                    "The first layer of a Sequential model needs an input_shape"
                )
            layer.build(self.layers[-1].units)
        self.layers.append(layer)

    def forward(self, x: Float[Tensor, "batch d_in"]) -> Float[Tensor, "batch d_out"]:
        for layer in self.layers:
            x = layer(x)
        return x

    def compile(
        self,
        optimizer: str | Optimizer,
        loss: str | dict[str, Any],
        metrics: Sequence[str] | None = None,
    ) -> None:
        """Configure the model for training."""
        self.optimizer = get_optimizer(optimizer)
        self._loss_fn = get_loss(loss)
        self.loss = loss
        self.metrics = list(metrics or [])
        self._metric_fns = {name: get_metric(name) for name in self.metrics}
        self.optimizer.bind(self.parameters())

    @property
    def is_compiled(self) -> bool:
        return self.optimizer is not None

    def _compute_logs(self, y_pred: Tensor, y_true: Tensor, loss: Tensor) -> dict[str, float]:
        logs = {"loss": loss.item()}
        with torch.no_grad():
            for name, fn in self._metric_fns.items():
                logs[name] = fn(y_pred, y_true).item()
        return logs

    def fit(
        self,
        x,
        y,
        epochs: int = 1,
        batch_size: int = 32,
        shuffle: bool = False,
    ) -> History:
        """
        Train the model for a fixed number of epochs.

        Args:
            x: Input data, shape (num_samples, d_in)
            y: Targets, shape (num_samples, d_out)
            epochs: Number of passes over the data
            batch_size: Samples per gradient update
            shuffle: Whether to shuffle samples before each epoch

        Returns:
            History with the sample-weighted mean loss and metrics per epoch
        """
        if not self.is_compiled:
            raise RuntimeError("You must compile a model before training it.")
        x, y = _to_tensor(x), _to_tensor(y)
        num_samples = x.shape[0]
        if y.shape[0] != num_samples:
            raise ValueError(
                f"Input and target sample counts differ: {num_samples} vs {y.shape[0]}"
            )

        history = History()
        self.train()
        for epoch in range(epochs):
            order = torch.randperm(num_samples) if shuffle else torch.arange(num_samples)
            totals: dict[str, float] = {}
            for start in range(0, num_samples, batch_size):
                index = order[start:start + batch_size]
                x_batch, y_batch = x[index], y[index]

                self.optimizer.zero_grad()
                y_pred = self(x_batch)
                loss = self._loss_fn(y_pred, y_batch)
                loss.backward()
                self.optimizer.step()

                for key, value in self._compute_logs(y_pred, y_batch, loss).items():
                    totals[key] = totals.get(key, 0.0) + value * len(index)

            logs = {key: value / num_samples for key, value in totals.items()}
            history.record(epoch, logs)
            logger.debug("Epoch %d: %s", epoch + 1, logs)
        self.eval()
        return history

    @torch.no_grad()
    def evaluate(self, x, y) -> dict[str, float]:
        """Return the loss and metric values on the given data."""
        if not self.is_compiled:
            raise RuntimeError("You must compile a model before evaluating it.")
        x, y = _to_tensor(x), _to_tensor(y)
        self.eval()
        y_pred = self(x)
        return self._compute_logs(y_pred, y, self._loss_fn(y_pred, y))

    @torch.no_grad()
    def predict(self, x) -> Tensor:
        self.eval()
        return self(_to_tensor(x))

    def get_weights(self) -> list[np.ndarray]:
        return [w for layer in self.layers for w in layer.get_weights()]

    def set_weights(self, weights: Sequence) -> None:
        weights = list(weights)
        offset = 0
        for layer in self.layers:
            count = len(list(layer.parameters()))
            layer.set_weights(weights[offset:offset + count])
            offset += count
        if offset != len(weights):
            raise ValueError(f"Model expects {offset} weights, got {len(weights)}")

    def get_config(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "layers": [
                {"class_name": layer.get_class_name(), "config": layer.get_config()}
                for layer in self.layers
            ],
        }

    @classmethod
    def from_config(cls, config: dict[str, Any]):
        registry = SerializationMap.get_map()
        layers = []
        for layer_config in config.get("layers", []):
            entry = registry.get(layer_config["class_name"])
            if entry is None:
                raise ValueError(f"Unknown layer class: {layer_config['class_name']}")
            constructor, parser = entry
            layers.append(parser(constructor, layer_config["config"]))
        return cls(layers=layers, name=config.get("name"))

    def to_artifacts(self) -> ModelArtifacts:
        weight_specs, weight_data = encode_weights(self.named_parameters())
        return ModelArtifacts(
            model_topology={"class_name": self.get_class_name(), "config": self.get_config()},
            weight_specs=weight_specs,
            weight_data=weight_data,
            format="layers-model",
            generated_by=f"torchserialize (torch {torch.__version__})",
        )

    async def save(self, handler: IOHandler) -> SaveResult:
        """Pass this model's artifacts to ``handler.save``."""
        artifacts = self.to_artifacts()
        logger.debug(
            "Saving %s with %d weight tensors", self.get_class_name(), len(artifacts.weight_specs)
        )
        return await handler.save(artifacts)


def encode_weights(named_tensors) -> tuple[list[dict[str, Any]], bytes]:
    """
    Flatten named tensors into weight specs and one concatenated byte buffer.
    """
    specs = []
    chunks = []
    for name, tensor in named_tensors:
        array = np.ascontiguousarray(tensor.detach().cpu().numpy())
        specs.append({"name": name, "shape": list(array.shape), "dtype": str(array.dtype)})
        chunks.append(array.tobytes())
    return specs, b"".join(chunks)


def decode_weights(weight_specs: list[dict[str, Any]], weight_data: bytes) -> dict[str, np.ndarray]:
    weights = {}
    offset = 0
    for spec in weight_specs:
        dtype = np.dtype(spec["dtype"])
        count = math.prod(spec["shape"])
        size = count * dtype.itemsize
        if offset + size > len(weight_data):
            raise ValueError(
                f"Weight data too short for '{spec['name']}': need {offset + size} bytes, "
                f"have {len(weight_data)}"
            )
        array = np.frombuffer(weight_data, dtype=dtype, count=count, offset=offset)
        weights[spec["name"]] = array.reshape(spec["shape"]).copy()
        offset += size
    return weights


def model_from_artifacts(artifacts: ModelArtifacts) -> Sequential:
    if artifacts.model_topology is None:
        raise ValueError("Model artifacts have no topology")
    topology = artifacts.model_topology
    entry = SerializationMap.get_map().get(topology["class_name"])
    if entry is None:
        raise ValueError(f"Unknown model class: {topology['class_name']}")
    constructor, parser = entry
    model = parser(constructor, topology["config"])

    if artifacts.weight_specs:
        weights = decode_weights(artifacts.weight_specs, artifacts.weight_data or b"")
        params = dict(model.named_parameters())
        missing = sorted(set(params) - set(weights))
        if missing:
            raise ValueError(f"Weights missing for parameters: {', '.join(missing)}")
        with torch.no_grad():
            for name, param in params.items():
                param.copy_(torch.from_numpy(weights[name]))
    model.eval()
    return model


async def load_model(handler: IOHandler) -> Sequential:
    """
    Build an uncompiled model from the artifacts ``handler.load`` returns.
    """
    artifacts = await handler.load()
    model = model_from_artifacts(artifacts)
    logger.debug("Loaded %s from %s", model.get_class_name(), type(handler).__name__)
    return model
