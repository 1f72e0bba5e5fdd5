"""
Serializable optimizers.

Each optimizer is described by its class name and a config dict holding its
hyperparameters and the per-parameter state it has accumulated. The torch
optimizer doing the actual update is created when the optimizer is bound to a
model's parameters, so an optimizer can be rebuilt from config before the
model it belongs to exists.
"""
import logging
from typing import Any

import torch

from .nn_utils import clip_grad_norm_
from .registry import Serializable, register_class

logger = logging.getLogger(__name__)


class DecoupledAdam(torch.optim.Optimizer):
    """
    Adam with decoupled weight decay (AdamW).

    Implements the AdamW algorithm from "Decoupled Weight Decay Regularization"
    (Loshchilov & Hutter, 2019). With ``weight_decay=0`` this is plain Adam.
    """

    def __init__(
        self,
        params,
        lr: float = 1e-3,
        betas: tuple[float, float] = (0.9, 0.999),
        eps: float = 1e-8,
        weight_decay: float = 0.0,
    ):
        if lr < 0.0:
            raise ValueError(f"Invalid learning rate: {lr}")
        if eps < 0.0:
            raise ValueError(f"Invalid epsilon value: {eps}")
        if not 0.0 <= betas[0] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 0: {betas[0]}")
        if not 0.0 <= betas[1] < 1.0:
            raise ValueError(f"Invalid beta parameter at index 1: {betas[1]}")
        if weight_decay < 0.0:
            raise ValueError(f"Invalid weight_decay value: {weight_decay}")

        defaults = dict(lr=lr, betas=betas, eps=eps, weight_decay=weight_decay)
        super().__init__(params, defaults)

    @torch.no_grad()
    def step(self, closure=None):
        """Perform a single optimization step."""
        loss = None
        if closure is not None:
            with torch.enable_grad():
                loss = closure()

        for group in self.param_groups:
            beta1, beta2 = group['betas']
            lr = group['lr']
            eps = group['eps']
            weight_decay = group['weight_decay']

            for p in group['params']:
                if p.grad is None:
                    continue

                grad = p.grad

                # State initialization
                state = self.state[p]
                if len(state) == 0:
                    state['step'] = 0
                    state['exp_avg'] = torch.zeros_like(p)
                    state['exp_avg_sq'] = torch.zeros_like(p)

                exp_avg, exp_avg_sq = state['exp_avg'], state['exp_avg_sq']
                state['step'] += 1

                exp_avg.mul_(beta1).add_(grad, alpha=1 - beta1)
                exp_avg_sq.mul_(beta2).addcmul_(grad, grad, value=1 - beta2)

                bias_correction1 = 1 - beta1 ** state['step']
                bias_correction2 = 1 - beta2 ** state['step']

                corrected_exp_avg = exp_avg / bias_correction1
                corrected_exp_avg_sq = exp_avg_sq / bias_correction2

                # theta_t = theta_{t-1} - lr * (m_t / (sqrt(v_t) + eps) + lambda * theta_{t-1})
                p.add_(corrected_exp_avg / (corrected_exp_avg_sq.sqrt() + eps), alpha=-lr)

                if weight_decay != 0:
                    p.add_(p, alpha=-lr * weight_decay)

        return loss


def encode_tensor(tensor: torch.Tensor) -> dict[str, Any]:
    """Encode a tensor as a JSON-safe dict of dtype, shape and flat values."""
    tensor = tensor.detach().cpu()
    return {
        "dtype": str(tensor.dtype).removeprefix("torch."),
        "shape": list(tensor.shape),
        "values": tensor.reshape(-1).tolist(),
    }


def decode_tensor(encoded: dict[str, Any]) -> torch.Tensor:
    dtype = getattr(torch, encoded["dtype"])
    return torch.tensor(encoded["values"], dtype=dtype).reshape(encoded["shape"])


def _is_encoded_tensor(value: Any) -> bool:
    return isinstance(value, dict) and set(value) == {"dtype", "shape", "values"}


def encode_state(state: dict[int, dict[str, Any]]) -> dict[str, dict[str, Any]]:
    """
    Encode a torch optimizer ``state_dict()["state"]`` as JSON-safe data.

    Parameter indices become string keys; tensors become encoded dicts; plain
    numbers and None pass through.
    """
    encoded = {}
    for index, param_state in state.items():
        encoded[str(index)] = {
            key: encode_tensor(value) if isinstance(value, torch.Tensor) else value
            for key, value in param_state.items()
        }
    return encoded


def decode_state(encoded: dict[str, dict[str, Any]]) -> dict[int, dict[str, Any]]:
    return {
        int(index): {
            key: decode_tensor(value) if _is_encoded_tensor(value) else value
            for key, value in param_state.items()
        }
        for index, param_state in encoded.items()
    }


class Optimizer(Serializable):
    """
    Base class for serializable optimizers.

    Subclasses implement ``build`` (create the torch optimizer for a list of
    parameters) and ``get_hyperparameters``.
    """

    def __init__(self, learning_rate: float = 0.001, clipnorm: float | None = None):
        if learning_rate < 0.0:
            raise ValueError(f"Invalid learning rate: {learning_rate}")
        if clipnorm is not None and clipnorm <= 0.0:
            raise ValueError(f"Invalid clipnorm value: {clipnorm}")
        self.learning_rate = learning_rate
        self.clipnorm = clipnorm
        self._params: list[torch.nn.Parameter] = []
        self._optimizer: torch.optim.Optimizer | None = None
        self._restored_state: dict[str, dict[str, Any]] | None = None

    def build(self, params: list[torch.nn.Parameter]) -> torch.optim.Optimizer:
        raise NotImplementedError

    def get_hyperparameters(self) -> dict[str, Any]:
        return {"learning_rate": self.learning_rate, "clipnorm": self.clipnorm}

    @property
    def is_bound(self) -> bool:
        return self._optimizer is not None

    def bind(self, params) -> None:
        """
        Attach the optimizer to model parameters.

        State restored from a config is loaded into the new torch optimizer;
        parameters are matched by position.
        """
        self._params = list(params)
        self._optimizer = self.build(self._params)
        if self._restored_state:
            state_dict = self._optimizer.state_dict()
            state_dict["state"] = decode_state(self._restored_state)
            self._optimizer.load_state_dict(state_dict)
            logger.debug(
                "Restored %s state for %d parameters",
                self.get_class_name(),
                len(self._restored_state),
            )
        self._restored_state = None

    def _require_bound(self) -> torch.optim.Optimizer:
        if not self.is_bound:
            raise RuntimeError(
                f"{self.get_class_name()} is not bound to any parameters; "
                "compile a model with it first."
            )
        return self._optimizer

    def zero_grad(self) -> None:
        self._require_bound().zero_grad(set_to_none=True)

    def step(self) -> None:
        optimizer = self._require_bound()
        if self.clipnorm is not None:
            clip_grad_norm_(self._params, self.clipnorm)
        optimizer.step()

    def get_state(self) -> dict[str, dict[str, Any]]:
        if not self.is_bound:
            return dict(self._restored_state or {})
        return encode_state(self._optimizer.state_dict()["state"])

    def get_config(self) -> dict[str, Any]:
        config = self.get_hyperparameters()
        config["state"] = self.get_state()
        return config

    @classmethod
    def from_config(cls, config: dict[str, Any]):
        config = dict(config)
        state = config.pop("state", None)
        optimizer = cls(**config)
        optimizer._restored_state = state or None
        return optimizer

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_hyperparameters().items())
        return f"{self.get_class_name()}({params})"


@register_class
class SGD(Optimizer):
    """Stochastic gradient descent with optional (Nesterov) momentum."""

    def __init__(
        self,
        learning_rate: float = 0.01,
        momentum: float = 0.0,
        nesterov: bool = False,
        clipnorm: float | None = None,
    ):
        super().__init__(learning_rate=learning_rate, clipnorm=clipnorm)
        if momentum < 0.0:
            raise ValueError(f"Invalid momentum value: {momentum}")
        if nesterov and momentum == 0.0:
            raise ValueError("Nesterov momentum requires a momentum > 0")
        self.momentum = momentum
        self.nesterov = nesterov

    def build(self, params):
        return torch.optim.SGD(
            params, lr=self.learning_rate, momentum=self.momentum, nesterov=self.nesterov
        )

    def get_hyperparameters(self):
        config = super().get_hyperparameters()
        config.update(momentum=self.momentum, nesterov=self.nesterov)
        return config


@register_class
class Adam(Optimizer):
    """Adam optimizer."""

    def __init__(
        self,
        learning_rate: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
        clipnorm: float | None = None,
    ):
        super().__init__(learning_rate=learning_rate, clipnorm=clipnorm)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

    def _weight_decay(self) -> float:
        return 0.0

    def build(self, params):
        return DecoupledAdam(
            params,
            lr=self.learning_rate,
            betas=(self.beta1, self.beta2),
            eps=self.epsilon,
            weight_decay=self._weight_decay(),
        )

    def get_hyperparameters(self):
        config = super().get_hyperparameters()
        config.update(beta1=self.beta1, beta2=self.beta2, epsilon=self.epsilon)
        return config


@register_class
class AdamW(Adam):
    """AdamW optimizer (Adam with decoupled weight decay)."""

    def __init__(
        self,
        learning_rate: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
        weight_decay: float = 0.01,
        clipnorm: float | None = None,
    ):
        super().__init__(
            learning_rate=learning_rate,
            beta1=beta1,
            beta2=beta2,
            epsilon=epsilon,
            clipnorm=clipnorm,
        )
        if weight_decay < 0.0:
            raise ValueError(f"Invalid weight_decay value: {weight_decay}")
        self.weight_decay = weight_decay

    def _weight_decay(self) -> float:
        return self.weight_decay

    def get_hyperparameters(self):
        config = super().get_hyperparameters()
        config["weight_decay"] = self.weight_decay
        return config


OPTIMIZERS: dict[str, type[Optimizer]] = {
    "sgd": SGD,
    "adam": Adam,
    "adamw": AdamW,
}


def get_optimizer(identifier: str | Optimizer) -> Optimizer:
    """Return ``identifier`` itself, or a default-configured optimizer by name."""
    if isinstance(identifier, Optimizer):
        return identifier
    key = identifier.lower()
    if key not in OPTIMIZERS:
        raise ValueError(
            f"Unknown optimizer '{identifier}'. Available: {', '.join(sorted(OPTIMIZERS))}"
        )
    return OPTIMIZERS[key]()
