"""Conversions between environment values and tensors, plus training helpers."""

from __future__ import annotations

import math
import random
from typing import Any, TypeVar

from rlagents.base import Action, State
from rlagents.nn import AdamW, Module, Tensor

A = TypeVar("A", bound=Action)
M = TypeVar("M", bound=Module)


def to_state_tensor(state: State) -> Tensor:
    return state.to_tensor()


def to_action_tensor(action: Any) -> Tensor:
    return Tensor([int(action)])


def to_reward_tensor(reward: Any) -> Tensor:
    return Tensor([float(reward)])


def to_not_done_tensor(done: bool) -> Tensor:
    return Tensor([0.0 if done else 1.0])


def convert_tensor_to_action(output: Tensor, action_type: type[A]) -> A:
    """The action with the highest score in the first row of ``output``."""
    return action_type(int(output.argmax(1).tolist()[0][0]))


def sample_action_from_tensor(output: Tensor, action_type: type[A]) -> A | None:
    """Draw an action with probability proportional to the values in ``output``.

    Returns None when the values are not usable weights.
    """
    weights = [float(value) for value in output.data.ravel()]
    if not weights or any(not math.isfinite(w) or w < 0 for w in weights):
        return None
    if sum(weights) <= 0:
        return None
    index = random.choices(range(len(weights)), weights=weights)[0]
    return action_type(index)


def get_elem(i: int, tensor: Tensor) -> float | None:
    """The ``i``-th element of the flattened tensor, or None when out of range."""
    flat = tensor.data.ravel()
    if not 0 <= i < flat.size:
        return None
    return float(flat[i])


def elementwise_min(lhs: Tensor, rhs: Tensor) -> Tensor:
    return lhs.mask_where(rhs.lower(lhs), rhs)


def update_parameters(loss: Tensor, module: M, optimizer: AdamW, learning_rate: float) -> M:
    """Backpropagate ``loss`` and let ``optimizer`` update ``module``."""
    for param in module.parameters():
        param.grad = None
    loss.backward()
    return optimizer.step(learning_rate, module)