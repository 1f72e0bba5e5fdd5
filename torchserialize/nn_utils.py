"""
Activations, losses, metrics and gradient utilities, looked up by identifier.
"""
import functools
from typing import Any, Callable

import torch
import torch.nn.functional as F
from jaxtyping import Float
from torch import Tensor


def softmax(x: Float[Tensor, "..."], dim: int = -1) -> Float[Tensor, "..."]:
    """
    Compute softmax with numerical stability.

    Args:
        x: Input tensor
        dim: Dimension to apply softmax

    Returns:
        Softmax normalized tensor
    """
    # Subtract max for numerical stability
    x_max = torch.max(x, dim=dim, keepdim=True)[0]
    x_exp = torch.exp(x - x_max)
    x_sum = torch.sum(x_exp, dim=dim, keepdim=True)
    return x_exp / x_sum


def silu(x: Float[Tensor, "..."]) -> Float[Tensor, "..."]:
    """
    SiLU (Swish) activation function.

    SiLU(x) = x * sigmoid(x)
    """
    return x * torch.sigmoid(x)


def linear(x: Float[Tensor, "..."]) -> Float[Tensor, "..."]:
    return x


ACTIVATIONS: dict[str, Callable[[Tensor], Tensor]] = {
    "linear": linear,
    "relu": torch.relu,
    "sigmoid": torch.sigmoid,
    "tanh": torch.tanh,
    "silu": silu,
    "swish": silu,
    "softmax": softmax,
}


def get_activation(identifier: str | None) -> Callable[[Tensor], Tensor]:
    if identifier is None:
        return linear
    if identifier not in ACTIVATIONS:
        raise ValueError(
            f"Unknown activation '{identifier}'. "
            f"Available: {', '.join(sorted(ACTIVATIONS))}"
        )
    return ACTIVATIONS[identifier]


def mean_squared_error(
    y_pred: Float[Tensor, "batch ..."],
    y_true: Float[Tensor, "batch ..."],
) -> Float[Tensor, ""]:
    return torch.mean((y_pred - y_true) ** 2)


def mean_absolute_error(
    y_pred: Float[Tensor, "batch ..."],
    y_true: Float[Tensor, "batch ..."],
) -> Float[Tensor, ""]:
    return torch.mean(torch.abs(y_pred - y_true))


def huber(
    y_pred: Float[Tensor, "batch ..."],
    y_true: Float[Tensor, "batch ..."],
    delta: float = 1.0,
) -> Float[Tensor, ""]:
    """
    Huber loss: quadratic below ``delta``, linear above it.
    """
    error = torch.abs(y_pred - y_true)
    quadratic = torch.clamp(error, max=delta)
    linear_part = error - quadratic
    return torch.mean(0.5 * quadratic ** 2 + delta * linear_part)


def binary_crossentropy(
    y_pred: Float[Tensor, "batch ..."],
    y_true: Float[Tensor, "batch ..."],
    epsilon: float = 1e-7,
) -> Float[Tensor, ""]:
    """Binary cross-entropy on probabilities (not logits)."""
    y_pred = torch.clamp(y_pred, epsilon, 1 - epsilon)
    return -torch.mean(y_true * torch.log(y_pred) + (1 - y_true) * torch.log(1 - y_pred))


def cross_entropy(
    inputs: Float[Tensor, "batch_size num_classes"],
    targets: Tensor,
) -> Float[Tensor, ""]:
    """
    Compute cross-entropy loss from unnormalized logits.

    Args:
        inputs: Unnormalized logits of shape (batch_size, num_classes)
        targets: Target class indices of shape (batch_size,) or (batch_size, 1)

    Returns:
        Average cross-entropy loss (scalar)
    """
    targets = targets.reshape(-1).long()
    # Compute log softmax with numerical stability
    log_probs = F.log_softmax(inputs, dim=-1)

    # Gather log probabilities for target classes
    batch_size = inputs.shape[0]
    target_log_probs = log_probs[torch.arange(batch_size), targets]

    # Return negative mean
    return -target_log_probs.mean()


LOSSES: dict[str, Callable[..., Tensor]] = {
    "meanSquaredError": mean_squared_error,
    "mse": mean_squared_error,
    "meanAbsoluteError": mean_absolute_error,
    "mae": mean_absolute_error,
    "huber": huber,
    "binaryCrossentropy": binary_crossentropy,
    "sparseCategoricalCrossentropy": cross_entropy,
}


def get_loss(identifier: str | dict[str, Any]) -> Callable[[Tensor, Tensor], Tensor]:
    """
    Resolve a loss identifier.

    The identifier is either a name from ``LOSSES`` or a parameterized form
    ``{"class_name": name, "config": {...}}`` whose config is bound as keyword
    arguments, e.g. ``{"class_name": "huber", "config": {"delta": 0.5}}``.
    """
    if isinstance(identifier, dict):
        name = identifier.get("class_name")
        config = identifier.get("config") or {}
    else:
        name, config = identifier, {}

    if name not in LOSSES:
        raise ValueError(
            f"Unknown loss '{name}'. Available: {', '.join(sorted(LOSSES))}"
        )
    fn = LOSSES[name]
    if config:
        fn = functools.partial(fn, **config)
    return fn


def accuracy(
    y_pred: Float[Tensor, "batch ..."],
    y_true: Float[Tensor, "batch ..."],
) -> Float[Tensor, ""]:
    """
    Fraction of correct predictions.

    Multi-column outputs compare argmax against class indices (or one-hot
    targets); single-column outputs compare the rounded prediction.
    """
    if y_pred.dim() > 1 and y_pred.shape[-1] > 1:
        predicted = torch.argmax(y_pred, dim=-1)
        if y_true.shape == y_pred.shape:
            expected = torch.argmax(y_true, dim=-1)
        else:
            expected = y_true.reshape(-1).long()
    else:
        predicted = torch.round(y_pred)
        expected = y_true
    return torch.mean((predicted == expected).float())


METRICS: dict[str, Callable[[Tensor, Tensor], Tensor]] = {
    "accuracy": accuracy,
    "acc": accuracy,
    "mse": mean_squared_error,
    "meanSquaredError": mean_squared_error,
    "mae": mean_absolute_error,
    "meanAbsoluteError": mean_absolute_error,
}


def get_metric(identifier: str) -> Callable[[Tensor, Tensor], Tensor]:
    if identifier not in METRICS:
        raise ValueError(
            f"Unknown metric '{identifier}'. Available: {', '.join(sorted(METRICS))}"
        )
    return METRICS[identifier]


def clip_grad_norm_(parameters, max_norm: float) -> None:
    """
    Clip gradients by global L2 norm.

    Args:
        parameters: Iterable of parameters with gradients
        max_norm: Maximum L2 norm
    """
    # Filter parameters that have gradients
    params_with_grad = [p for p in parameters if p.grad is not None]

    if len(params_with_grad) == 0:
        return

    # Compute total norm
    total_norm = torch.sqrt(
        sum(torch.sum(p.grad ** 2) for p in params_with_grad)
    )

    # Compute clipping coefficient
    clip_coef = max_norm / (total_norm + 1e-6)

    # Clip gradients if needed
    if clip_coef < 1:
        for p in params_with_grad:
            p.grad.mul_(clip_coef)
