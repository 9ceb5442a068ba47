"""Core abstractions: actions, states, environments, agents and models."""

from __future__ import annotations

import random
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar

from rlagents.nn import Module, Tensor


class Action(IntEnum):
    """Discrete actions; subclasses list their members with values 0..n-1."""

    @classmethod
    def random(cls) -> Action:
        return cls(random.randrange(cls.size()))

    @classmethod
    def enumerate(cls) -> list[Action]:
        return list(cls)

    @classmethod
    def size(cls) -> int:
        return len(cls.enumerate())


class State(ABC):
    """An observation that can be fed to a model."""

    @abstractmethod
    def to_tensor(self) -> Tensor:
        """One-dimensional float tensor holding the observation."""

    @classmethod
    @abstractmethod
    def size(cls) -> int:
        """Number of values in the observation."""


@dataclass(frozen=True)
class Snapshot:
    """The outcome of one environment transition."""

    state: Any
    reward: Any
    done: bool


class Environment(ABC):
    """A world an agent acts in."""

    state_type: ClassVar[type[State]]
    action_type: ClassVar[type[Action]]
    MAX_STEPS: ClassVar[int] = sys.maxsize

    def __init__(self, visualized: bool = False) -> None:
        self.visualized = visualized

    @abstractmethod
    def state(self) -> State:
        """The current observation."""

    @abstractmethod
    def reset(self) -> Snapshot:
        """Start a new episode."""

    @abstractmethod
    def step(self, action: Action) -> Snapshot:
        """Apply an action and report the transition."""


class Agent(ABC):
    """Something that picks an action for a state."""

    @abstractmethod
    def react(self, state: State) -> Action | None:
        """The chosen action, or None when the agent cannot decide."""


class Model(Module, ABC):
    """A trainable module with a training pass and an inference pass."""

    @abstractmethod
    def forward(self, x: Tensor) -> Any:
        """Output used during training."""

    def infer(self, x: Tensor) -> Any:
        """Output used when acting; the training output unless overridden."""
        return self.forward(x)