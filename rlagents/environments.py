"""Classic control environments: cart-pole balancing and the mountain car."""

from __future__ import annotations

import math
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import ClassVar

import numpy as np

from rlagents.base import Action, Environment, Snapshot, State
from rlagents.nn import ELEM_TYPE, Tensor


def _as_elem(values: Sequence[float]) -> tuple[float, ...]:
    return tuple(float(ELEM_TYPE(value)) for value in values)


# Cart-pole ------------------------------------------------------------------


@dataclass(frozen=True)
class CartPoleState(State):
    """Cart position, cart velocity, pole angle and pole angular velocity."""

    data: tuple[float, float, float, float]

    def __post_init__(self) -> None:
        if len(self.data) != self.size():
            raise ValueError(f"cart-pole state needs {self.size()} values")
        object.__setattr__(self, "data", _as_elem(self.data))

    @classmethod
    def from_observation(cls, observation: Sequence[float]) -> CartPoleState:
        return cls(tuple(observation[:4]))

    def to_tensor(self) -> Tensor:
        return Tensor(list(self.data))

    @classmethod
    def size(cls) -> int:
        return 4


class CartPoleAction(Action):
    LEFT = 0
    RIGHT = 1


class CartPole(Environment):
    """Balance a pole on a cart by pushing the cart left or right."""

    state_type: ClassVar[type[State]] = CartPoleState
    action_type: ClassVar[type[Action]] = CartPoleAction
    MAX_STEPS: ClassVar[int] = 500

    GRAVITY = 9.8
    MASS_CART = 1.0
    MASS_POLE = 0.1
    TOTAL_MASS = MASS_CART + MASS_POLE
    LENGTH = 0.5
    POLE_MASS_LENGTH = MASS_POLE * LENGTH
    FORCE_MAG = 10.0
    TAU = 0.02
    THETA_THRESHOLD = 12 * 2 * math.pi / 360
    X_THRESHOLD = 2.4

    def __init__(self, visualized: bool = False) -> None:
        super().__init__(visualized)
        self._rng = np.random.default_rng()
        self._values = [0.0, 0.0, 0.0, 0.0]
        self._steps_beyond_done: int | None = None
        self._restart()

    def _restart(self) -> None:
        self._values = [float(v) for v in self._rng.uniform(-0.05, 0.05, 4)]
        self._steps_beyond_done = None

    def state(self) -> CartPoleState:
        return CartPoleState.from_observation(self._values)

    def reset(self) -> Snapshot:
        self._restart()
        return Snapshot(self.state(), 1.0, False)

    def step(self, action: Action | int) -> Snapshot:
        action = CartPoleAction(action)
        x, x_dot, theta, theta_dot = self._values
        force = self.FORCE_MAG if action is CartPoleAction.RIGHT else -self.FORCE_MAG
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)

        temp = (force + self.POLE_MASS_LENGTH * theta_dot**2 * sin_theta) / self.TOTAL_MASS
        theta_acc = (self.GRAVITY * sin_theta - cos_theta * temp) / (
            self.LENGTH * (4.0 / 3.0 - self.MASS_POLE * cos_theta**2 / self.TOTAL_MASS)
        )
        x_acc = temp - self.POLE_MASS_LENGTH * theta_acc * cos_theta / self.TOTAL_MASS

        x += self.TAU * x_dot
        x_dot += self.TAU * x_acc
        theta += self.TAU * theta_dot
        theta_dot += self.TAU * theta_acc
        self._values = [x, x_dot, theta, theta_dot]

        done = (
            abs(x) > self.X_THRESHOLD or abs(theta) > self.THETA_THRESHOLD
        )
        if not done:
            reward = 1.0
        elif self._steps_beyond_done is None:
            self._steps_beyond_done = 0
            reward = 1.0
        else:
            self._steps_beyond_done += 1
            reward = 0.0

        if self.visualized:
            print(self.render(), file=sys.stderr)
        return Snapshot(self.state(), reward, done)

    def render(self, width: int = 61) -> str:
        """A one-line picture of the cart on its track."""
        x, _, theta, _ = self._values
        span = 2 * self.X_THRESHOLD
        column = round((min(max(x, -self.X_THRESHOLD), self.X_THRESHOLD) + self.X_THRESHOLD)
                       / span * (width - 1))
        pole = "|" if abs(theta) < 0.02 else ("/" if theta > 0 else "\\")
        track = ["-"] * width
        track[column] = pole
        return "".join(track)


# Mountain car ---------------------------------------------------------------


@dataclass(frozen=True)
class MountainCarState(State):
    """Car position and velocity."""

    data: tuple[float, float]

    def __post_init__(self) -> None:
        if len(self.data) != self.size():
            raise ValueError(f"mountain-car state needs {self.size()} values")
        object.__setattr__(self, "data", _as_elem(self.data))

    @classmethod
    def from_observation(cls, observation: Sequence[float]) -> MountainCarState:
        return cls(tuple(observation[:2]))

    def to_tensor(self) -> Tensor:
        return Tensor(list(self.data))

    @classmethod
    def size(cls) -> int:
        return 2


class MountainCarAction(Action):
    ACCELERATE_TO_LEFT = 0
    NOT_ACCELERATE = 1
    ACCELERATE_TO_RIGHT = 2


class MountainCar(Environment):
    """Drive an underpowered car out of a valley to the flag on the right."""

    state_type: ClassVar[type[State]] = MountainCarState
    action_type: ClassVar[type[Action]] = MountainCarAction
    MAX_STEPS: ClassVar[int] = 200

    MIN_POSITION = -1.2
    MAX_POSITION = 0.6
    MAX_SPEED = 0.07
    GOAL_POSITION = 0.5
    GOAL_VELOCITY = 0.0
    FORCE = 0.001
    GRAVITY = 0.0025

    def __init__(self, visualized: bool = False) -> None:
        super().__init__(visualized)
        self._rng = np.random.default_rng()
        self._position = 0.0
        self._velocity = 0.0
        self._restart()

    def _restart(self) -> None:
        self._position = float(self._rng.uniform(-0.6, -0.4))
        self._velocity = 0.0

    def state(self) -> MountainCarState:
        return MountainCarState.from_observation((self._position, self._velocity))

    def reset(self) -> Snapshot:
        self._restart()
        return Snapshot(self.state(), 0.0, False)

    def step(self, action: Action | int) -> Snapshot:
        action = MountainCarAction(action)
        velocity = self._velocity + (int(action) - 1) * self.FORCE
        velocity += math.cos(3 * self._position) * -self.GRAVITY
        velocity = min(max(velocity, -self.MAX_SPEED), self.MAX_SPEED)
        position = self._position + velocity
        position = min(max(position, self.MIN_POSITION), self.MAX_POSITION)
        if position == self.MIN_POSITION and velocity < 0:
            velocity = 0.0
        self._position = position
        self._velocity = velocity

        done = position >= self.GOAL_POSITION and velocity >= self.GOAL_VELOCITY
        if self.visualized:
            print(self.render(), file=sys.stderr)
        return Snapshot(self.state(), -1.0, done)

    def render(self, width: int = 61) -> str:
        """A one-line picture of the car between the track ends."""
        span = self.MAX_POSITION - self.MIN_POSITION
        column = round((self._position - self.MIN_POSITION) / span * (width - 1))
        goal = round((self.GOAL_POSITION - self.MIN_POSITION) / span * (width - 1))
        track = ["_"] * width
        track[goal] = "F"
        track[column] = "o"
        return "".join(track)