"""Fixed-capacity replay memory and batch sampling."""

from __future__ import annotations

import random
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from rlagents.base import Action, State
from rlagents.nn import Tensor, cat

T = TypeVar("T")

MemoryIndices = list[int]


def sample_indices(indices: Sequence[int], size: int) -> MemoryIndices:
    """Draw ``size`` indices uniformly, with replacement, from ``indices``."""
    if size > 0 and not indices:
        raise ValueError("cannot sample from an empty set of indices")
    return [random.choice(indices) for _ in range(size)]


def get_batch(
    data: Sequence[T], indices: Sequence[int], converter: Callable[[T], Tensor]
) -> Tensor:
    """Stack the converted items at ``indices`` into a tensor with one row per index.

    Indices wrap around the length of ``data``; an empty ``data`` contributes
    nothing, which leaves no rows to stack.
    """
    rows = [converter(data[i % len(data)]) for i in indices] if data else []
    return cat(rows, 0).reshape((len(indices), -1))


class Memory:
    """Ring buffers of transitions; the oldest entries are dropped when full."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("memory capacity must be positive")
        self.capacity = capacity
        self._state: deque[State] = deque(maxlen=capacity)
        self._next_state: deque[State] = deque(maxlen=capacity)
        self._action: deque[Action] = deque(maxlen=capacity)
        self._reward: deque[Any] = deque(maxlen=capacity)
        self._done: deque[bool] = deque(maxlen=capacity)

    def push(
        self, state: State, next_state: State, action: Action, reward: Any, done: bool
    ) -> None:
        self._state.append(state)
        self._next_state.append(next_state)
        self._action.append(action)
        self._reward.append(reward)
        self._done.append(done)

    def states(self) -> deque[State]:
        return self._state

    def next_states(self) -> deque[State]:
        return self._next_state

    def actions(self) -> deque[Action]:
        return self._action

    def rewards(self) -> deque[Any]:
        return self._reward

    def dones(self) -> deque[bool]:
        return self._done

    def __len__(self) -> int:
        return len(self._state)

    def is_empty(self) -> bool:
        return not self._state

    def clear(self) -> None:
        for buffer in (self._state, self._next_state, self._action, self._reward, self._done):
            buffer.clear()