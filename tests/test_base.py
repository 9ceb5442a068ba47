import dataclasses
import sys

import numpy as np
import pytest

from rlagents.base import Action, Agent, Environment, Model, Snapshot, State
from rlagents.nn import Tensor


class Move(Action):
    LEFT = 0
    RIGHT = 1
    STAY = 2


@dataclasses.dataclass(frozen=True)
class Point(State):
    x: float
    y: float

    def to_tensor(self):
        return Tensor([self.x, self.y])

    @classmethod
    def size(cls):
        return 2


class Walk(Environment):
    state_type = Point
    action_type = Move
    MAX_STEPS = 3

    def __init__(self, visualized=False):
        super().__init__(visualized)
        self.position = 0

    def state(self):
        return Point(float(self.position), 0.0)

    def reset(self):
        self.position = 0
        return Snapshot(self.state(), 0.0, False)

    def step(self, action):
        if action is Move.RIGHT:
            self.position += 1
        elif action is Move.LEFT:
            self.position -= 1
        return Snapshot(self.state(), 1.0, self.position >= self.MAX_STEPS)


class Scaler(Model):
    def __init__(self, factor):
        self.scale = Tensor([factor], requires_grad=True)

    def forward(self, x):
        return x * self.scale


def test_action_enumerate_and_size():
    assert Move.enumerate() == [Move.LEFT, Move.RIGHT, Move.STAY]
    assert Move.size() == len(Move)
    codes = Tensor([int(action) for action in Move.enumerate()])
    assert codes.tolist() == [0, 1, 2]


def test_action_random_is_member():
    for _ in range(50):
        assert Move.random() in Move.enumerate()
    samples = Tensor([int(Move.random()) for _ in range(50)]).data
    assert samples.min() >= 0
    assert samples.max() < Move.size()


def test_action_int_round_trip_and_invalid():
    for action in Move:
        assert Move(int(action)) is action
    best = Tensor([0.1, 0.9, 0.2]).unsqueeze().argmax(1).tolist()[0][0]
    assert Move(int(best)) is Move.RIGHT
    with pytest.raises(ValueError):
        Move(Move.size())


def test_state_to_tensor():
    point = Point(1.5, -2.0)
    tensor = point.to_tensor()
    assert tensor.shape == (Point.size(),)
    np.testing.assert_allclose(tensor.data, [1.5, -2.0])
    assert tensor.tolist() == Tensor([1.5, -2.0]).tolist()


def test_abstract_classes_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Environment(False)
    with pytest.raises(TypeError):
        Agent()
    with pytest.raises(TypeError):
        State()


def test_snapshot_is_immutable():
    snapshot = Snapshot(Point(0.0, 0.0), 1.0, False)
    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.done = True
    assert snapshot.reward == 1.0


def test_environment_runs_until_done():
    env = Walk(visualized=False)
    assert env.visualized is False
    steps = 0
    done = False
    while not done:
        done = env.step(Move.RIGHT).done
        steps += 1
    assert steps == Walk.MAX_STEPS
    assert env.reset() == Snapshot(Point(0.0, 0.0), 0.0, False)


def test_default_max_steps_is_unbounded():
    with pytest.raises(TypeError):
        Environment(True)
    assert Environment.MAX_STEPS == sys.maxsize


def test_agent_react():
    class AlwaysRight(Agent):
        def react(self, state):
            return Move.RIGHT

    env = Walk()
    snapshot = env.step(AlwaysRight().react(env.state()))
    assert snapshot == Snapshot(Point(1.0, 0.0), 1.0, False)


def test_model_infer_defaults_to_forward_and_clone():
    model = Scaler(3.0)
    x = Tensor([1.0, 2.0])
    np.testing.assert_allclose(model.infer(x).data, model.forward(x).data)
    copy = model.clone()
    copy.scale.data[:] = 5.0
    np.testing.assert_allclose(model.scale.data, [3.0])
    assert len(list(model.parameters())) == 1