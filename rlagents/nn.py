"""Reverse-mode differentiable tensors, layers and an AdamW optimiser built on numpy."""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

import numpy as np

ELEM_TYPE = np.float32

_rng = np.random.default_rng()

_Backward = Callable[[np.ndarray], Sequence[Union[np.ndarray, None]]]


def _unbroadcast(grad: np.ndarray, shape: tuple[int, ...]) -> np.ndarray:
    """Sum a broadcast gradient back down to ``shape``."""
    while grad.ndim > len(shape):
        grad = grad.sum(axis=0)
    for axis, size in enumerate(shape):
        if size == 1 and grad.shape[axis] != 1:
            grad = grad.sum(axis=axis, keepdims=True)
    return grad


def _as_tensor(value: Any) -> Tensor:
    return value if isinstance(value, Tensor) else Tensor(value)


def _index_array(indices: Any) -> np.ndarray:
    array = indices.data if isinstance(indices, Tensor) else np.asarray(indices)
    if array.dtype.kind not in "iu":
        raise TypeError("indices must be integers")
    return array.astype(np.int64)


class Tensor:
    """An n-dimensional array that records the operations applied to it."""

    def __init__(self, data: Any, requires_grad: bool = False) -> None:
        if isinstance(data, Tensor):
            data = data.data
        array = np.array(data)
        if array.dtype.kind == "b":
            pass
        elif array.dtype.kind in "iu":
            array = array.astype(np.int64)
        else:
            array = array.astype(ELEM_TYPE)
        if requires_grad and array.dtype != ELEM_TYPE:
            raise TypeError("only float tensors can require gradients")
        self.data: np.ndarray = array
        self.requires_grad = requires_grad
        self.grad: np.ndarray | None = None
        self._parents: tuple[Tensor, ...] = ()
        self._backward: _Backward | None = None

    @staticmethod
    def _result(data: Any, parents: tuple[Tensor, ...], backward: _Backward) -> Tensor:
        out = Tensor(data)
        if any(parent.requires_grad for parent in parents):
            out.requires_grad = True
            out._parents = parents
            out._backward = backward
        return out

    @property
    def shape(self) -> tuple[int, ...]:
        return self.data.shape

    @property
    def ndim(self) -> int:
        return self.data.ndim

    def __repr__(self) -> str:
        return f"Tensor({self.data.tolist()!r}, requires_grad={self.requires_grad})"

    def item(self) -> float | int | bool:
        return self.data.item()

    def numpy(self) -> np.ndarray:
        return self.data.copy()

    def tolist(self) -> Any:
        return self.data.tolist()

    # Arithmetic -----------------------------------------------------------

    def __add__(self, other: Any) -> Tensor:
        other = _as_tensor(other)
        return Tensor._result(
            self.data + other.data,
            (self, other),
            lambda g: (_unbroadcast(g, self.shape), _unbroadcast(g, other.shape)),
        )

    __radd__ = __add__

    def __sub__(self, other: Any) -> Tensor:
        other = _as_tensor(other)
        return Tensor._result(
            self.data - other.data,
            (self, other),
            lambda g: (_unbroadcast(g, self.shape), _unbroadcast(-g, other.shape)),
        )

    def __rsub__(self, other: Any) -> Tensor:
        return _as_tensor(other) - self

    def __mul__(self, other: Any) -> Tensor:
        other = _as_tensor(other)
        return Tensor._result(
            self.data * other.data,
            (self, other),
            lambda g: (
                _unbroadcast(g * other.data, self.shape),
                _unbroadcast(g * self.data, other.shape),
            ),
        )

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> Tensor:
        other = _as_tensor(other)
        return Tensor._result(
            self.data / other.data,
            (self, other),
            lambda g: (
                _unbroadcast(g / other.data, self.shape),
                _unbroadcast(-g * self.data / (other.data * other.data), other.shape),
            ),
        )

    def __rtruediv__(self, other: Any) -> Tensor:
        return _as_tensor(other) / self

    def __neg__(self) -> Tensor:
        return Tensor._result(-self.data, (self,), lambda g: (-g,))

    def __matmul__(self, other: Any) -> Tensor:
        other = _as_tensor(other)
        if self.ndim != 2 or other.ndim != 2:
            raise ValueError("matrix product needs two 2-dimensional tensors")
        return Tensor._result(
            self.data @ other.data,
            (self, other),
            lambda g: (g @ other.data.T, self.data.T @ g),
        )

    # Autodiff -------------------------------------------------------------

    def backward(self) -> None:
        """Propagate gradients and store them in ``grad`` of the leaf tensors reached."""
        if not self.requires_grad:
            raise ValueError("tensor does not require gradients")
        order: list[Tensor] = []
        seen: set[int] = set()
        stack: list[tuple[Tensor, bool]] = [(self, False)]
        while stack:
            node, finished = stack.pop()
            if finished:
                order.append(node)
                continue
            if id(node) in seen:
                continue
            seen.add(id(node))
            stack.append((node, True))
            stack.extend(
                (parent, False)
                for parent in node._parents
                if parent.requires_grad and id(parent) not in seen
            )

        grads: dict[int, np.ndarray] = {id(self): np.ones_like(self.data)}
        for node in reversed(order):
            grad = grads.pop(id(node), None)
            if grad is None:
                continue
            if node._backward is None:
                node.grad = np.asarray(grad, dtype=ELEM_TYPE)
                continue
            for parent, parent_grad in zip(node._parents, node._backward(grad)):
                if parent_grad is None or not parent.requires_grad:
                    continue
                key = id(parent)
                grads[key] = grads[key] + parent_grad if key in grads else parent_grad

    def detach(self) -> Tensor:
        return Tensor(self.data)

    # Indexing and shape ---------------------------------------------------

    def gather(self, dim: int, indices: Any) -> Tensor:
        index = _index_array(indices)
        if index.ndim != self.ndim:
            raise ValueError("indices must have as many dimensions as the tensor")
        dim %= self.ndim
        grid = list(np.indices(index.shape, sparse=True))
        grid[dim] = index
        key = tuple(grid)

        def backward(g: np.ndarray) -> tuple[np.ndarray]:
            out = np.zeros(self.shape, dtype=ELEM_TYPE)
            np.add.at(out, key, g)
            return (out,)

        return Tensor._result(self.data[key], (self,), backward)

    def select(self, dim: int, indices: Any) -> Tensor:
        index = _index_array(indices)
        dim %= self.ndim
        key = (slice(None),) * dim + (index,)

        def backward(g: np.ndarray) -> tuple[np.ndarray]:
            out = np.zeros(self.shape, dtype=ELEM_TYPE)
            np.add.at(out, key, g)
            return (out,)

        return Tensor._result(np.take(self.data, index, axis=dim), (self,), backward)

    def reshape(self, shape: Sequence[int]) -> Tensor:
        original = self.shape
        return Tensor._result(
            self.data.reshape(tuple(shape)), (self,), lambda g: (g.reshape(original),)
        )

    def unsqueeze(self) -> Tensor:
        return self.reshape((1, *self.shape))

    # Reductions -----------------------------------------------------------

    def max_dim(self, dim: int) -> Tensor:
        index = np.argmax(self.data, axis=dim, keepdims=True)

        def backward(g: np.ndarray) -> tuple[np.ndarray]:
            out = np.zeros(self.shape, dtype=ELEM_TYPE)
            np.put_along_axis(out, index, g, axis=dim)
            return (out,)

        return Tensor._result(np.take_along_axis(self.data, index, axis=dim), (self,), backward)

    def argmax(self, dim: int) -> Tensor:
        return Tensor(np.argmax(self.data, axis=dim, keepdims=True))

    def sum(self) -> Tensor:
        return Tensor._result(
            self.data.sum().reshape(1),
            (self,),
            lambda g: (np.full(self.shape, g.item(), dtype=ELEM_TYPE),),
        )

    def sum_dim(self, dim: int) -> Tensor:
        return Tensor._result(
            self.data.sum(axis=dim, keepdims=True),
            (self,),
            lambda g: (np.broadcast_to(g, self.shape).copy(),),
        )

    def mean(self) -> Tensor:
        count = self.data.size
        return Tensor._result(
            np.asarray(self.data.mean()).reshape(1),
            (self,),
            lambda g: (np.full(self.shape, g.item() / count, dtype=ELEM_TYPE),),
        )

    # Elementwise ----------------------------------------------------------

    def log(self) -> Tensor:
        return Tensor._result(np.log(self.data), (self,), lambda g: (g / self.data,))

    def exp(self) -> Tensor:
        result = np.exp(self.data)
        return Tensor._result(result, (self,), lambda g: (g * result,))

    def clamp(self, low: float, high: float) -> Tensor:
        inside = (self.data >= low) & (self.data <= high)
        return Tensor._result(np.clip(self.data, low, high), (self,), lambda g: (g * inside,))

    def clamp_min(self, low: float) -> Tensor:
        inside = self.data >= low
        return Tensor._result(np.maximum(self.data, low), (self,), lambda g: (g * inside,))

    def lower(self, other: Any) -> Tensor:
        """Elementwise ``self < other`` as a boolean tensor."""
        return Tensor(self.data < _as_tensor(other).data)

    def mask_where(self, mask: Tensor, value: Any) -> Tensor:
        """Take ``value`` where ``mask`` is true and ``self`` elsewhere."""
        value = _as_tensor(value)
        chosen = mask.data.astype(bool)
        return Tensor._result(
            np.where(chosen, value.data, self.data),
            (self, value),
            lambda g: (
                _unbroadcast(np.where(chosen, 0, g), self.shape),
                _unbroadcast(np.where(chosen, g, 0), value.shape),
            ),
        )


def relu(x: Tensor) -> Tensor:
    positive = x.data > 0
    return Tensor._result(np.maximum(x.data, 0), (x,), lambda g: (g * positive,))


def softmax(x: Tensor, dim: int) -> Tensor:
    shifted = np.exp(x.data - x.data.max(axis=dim, keepdims=True))
    result = shifted / shifted.sum(axis=dim, keepdims=True)
    return Tensor._result(
        result,
        (x,),
        lambda g: (result * (g - (g * result).sum(axis=dim, keepdims=True)),),
    )


def cat(tensors: Sequence[Tensor], dim: int) -> Tensor:
    parts = tuple(tensors)
    if not parts:
        raise ValueError("cannot concatenate an empty sequence of tensors")
    splits = np.cumsum([part.shape[dim] for part in parts])[:-1]
    return Tensor._result(
        np.concatenate([part.data for part in parts], axis=dim),
        parts,
        lambda g: tuple(np.split(g, splits, axis=dim)),
    )


class Reduction(str, Enum):
    MEAN = "mean"
    SUM = "sum"


def mse_loss(prediction: Tensor, target: Tensor, reduction: Reduction | str) -> Tensor:
    """Squared error between two tensors of the same shape, reduced to one element."""
    reduction = Reduction(reduction)
    if prediction.shape != target.shape:
        raise ValueError(f"shape mismatch: {prediction.shape} and {target.shape}")
    diff = prediction - target
    squared = diff * diff
    return squared.mean() if reduction is Reduction.MEAN else squared.sum()


# Modules --------------------------------------------------------------------


def _walk(path: str, value: Any) -> Iterator[tuple[str, Tensor]]:
    if isinstance(value, Tensor):
        yield path, value
    elif isinstance(value, Module):
        yield from value._named_parameters(f"{path}.")
    elif isinstance(value, (list, tuple)):
        for position, item in enumerate(value):
            yield from _walk(f"{path}.{position}", item)


class Module:
    """Base for objects whose tensor attributes are trainable parameters."""

    def _named_parameters(self, prefix: str = "") -> Iterator[tuple[str, Tensor]]:
        for name, value in vars(self).items():
            yield from _walk(f"{prefix}{name}", value)

    def parameters(self) -> Iterator[Tensor]:
        return (tensor for _, tensor in self._named_parameters())

    def clone(self):
        duplicate = copy.deepcopy(self)
        for tensor in duplicate.parameters():
            tensor.grad = None
            tensor._parents = ()
            tensor._backward = None
        return duplicate

    def no_grad(self):
        """Stop tracking gradients for every parameter; returns the module itself."""
        for tensor in self.parameters():
            tensor.requires_grad = False
            tensor.grad = None
        return self

    def valid(self):
        """A copy of the module fit for inference only."""
        return self.clone().no_grad()


@dataclass(frozen=True)
class KaimingUniform:
    gain: float = 1.0 / math.sqrt(3.0)

    def sample(self, shape: tuple[int, ...], fan_in: int, fan_out: int) -> np.ndarray:
        bound = self.gain * math.sqrt(3.0 / fan_in)
        return _rng.uniform(-bound, bound, shape)


@dataclass(frozen=True)
class XavierUniform:
    gain: float = 1.0

    def sample(self, shape: tuple[int, ...], fan_in: int, fan_out: int) -> np.ndarray:
        bound = self.gain * math.sqrt(6.0 / (fan_in + fan_out))
        return _rng.uniform(-bound, bound, shape)


class Linear(Module):
    """Affine layer ``x @ weight + bias`` with weight of shape (in, out)."""

    def __init__(
        self,
        in_features: int,
        out_features: int,
        initializer: KaimingUniform | XavierUniform | None = None,
    ) -> None:
        if in_features < 1 or out_features < 1:
            raise ValueError("layer sizes must be positive")
        init = initializer or KaimingUniform()
        self.weight = Tensor(
            init.sample((in_features, out_features), in_features, out_features),
            requires_grad=True,
        )
        self.bias: Tensor | None = Tensor(
            init.sample((out_features,), in_features, out_features), requires_grad=True
        )

    @classmethod
    def _from_parameters(cls, weight: Tensor, bias: Tensor | None) -> Linear:
        layer = cls.__new__(cls)
        layer.weight = weight
        layer.bias = bias
        return layer

    def forward(self, x: Tensor) -> Tensor:
        out = x @ self.weight
        return out if self.bias is None else out + self.bias


# Optimisation ---------------------------------------------------------------


@dataclass(frozen=True)
class GradientClipping:
    """Clip each gradient by value, or scale it down to a maximum L2 norm."""

    threshold: float
    by_norm: bool = False

    def __post_init__(self) -> None:
        if self.threshold <= 0:
            raise ValueError("clipping threshold must be positive")

    def clip(self, grad: np.ndarray) -> np.ndarray:
        if self.by_norm:
            norm = float(np.sqrt(np.sum(np.square(grad, dtype=np.float64))))
            return grad * min(self.threshold / (norm + 1e-6), 1.0)
        return np.clip(grad, -self.threshold, self.threshold)


@dataclass
class _Moments:
    first: np.ndarray
    second: np.ndarray
    time: int = 0


@dataclass
class AdamW:
    """Adam with decoupled weight decay; state is kept per parameter path."""

    grad_clipping: GradientClipping | None = None
    _state: dict[str, _Moments] = field(default_factory=dict, init=False, repr=False)

    beta_1 = 0.9
    beta_2 = 0.999
    epsilon = 1e-5
    weight_decay = 1e-4

    def step(self, learning_rate: float, module: Module):
        """Apply stored gradients to the module's parameters and clear them."""
        for name, param in module._named_parameters():
            grad = param.grad
            if grad is None:
                continue
            if self.grad_clipping is not None:
                grad = self.grad_clipping.clip(grad)
            moments = self._state.get(name)
            if moments is None or moments.first.shape != grad.shape:
                moments = _Moments(np.zeros_like(grad), np.zeros_like(grad))
                self._state[name] = moments
            moments.time += 1
            moments.first = self.beta_1 * moments.first + (1 - self.beta_1) * grad
            moments.second = self.beta_2 * moments.second + (1 - self.beta_2) * grad * grad
            first_hat = moments.first / (1 - self.beta_1**moments.time)
            second_hat = moments.second / (1 - self.beta_2**moments.time)
            decayed = param.data - param.data * learning_rate * self.weight_decay
            delta = first_hat / (np.sqrt(second_hat) + self.epsilon)
            param.data = (decayed - learning_rate * delta).astype(ELEM_TYPE)
            param.grad = None
        return module


def soft_update_linear(this: Linear, that: Linear, tau: float) -> Linear:
    """Blend two layers: ``this * (1 - tau) + that * tau``."""

    def blend(mine: Tensor, theirs: Tensor) -> Tensor:
        return Tensor(
            mine.data * (1.0 - tau) + theirs.data * tau, requires_grad=mine.requires_grad
        )

    weight = blend(this.weight, that.weight)
    bias = (
        blend(this.bias, that.bias)
        if this.bias is not None and that.bias is not None
        else None
    )
    return Linear._from_parameters(weight, bias)