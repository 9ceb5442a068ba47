import math
import random

import numpy as np
import pytest

from rlagents.environments import CartPole, CartPoleAction, CartPoleState
from rlagents.memory import Memory
from rlagents.nn import Linear, Tensor, soft_update_linear, softmax
from rlagents.sac import (
    SAC,
    SACActor,
    SACCritic,
    SACNets,
    SACOptimizer,
    SACTemperature,
    SACTrainingConfig,
)


class TinyActor(SACActor):
    def __init__(self):
        self.linear = Linear(4, 2)

    def forward(self, x):
        return softmax(self.linear.forward(x), 1)


class TinyCritic(SACCritic):
    def __init__(self, linear=None):
        self.linear = linear if linear is not None else Linear(4, 2)

    def forward(self, x):
        return self.linear.forward(x)

    def soft_update(self, that, tau):
        return TinyCritic(soft_update_linear(self.linear, that.linear, tau))


def _biased_actor(right_bias):
    actor = TinyActor()
    actor.linear.weight.data = np.zeros((4, 2), dtype=np.float32)
    actor.linear.bias.data = np.array([0.0, right_bias], dtype=np.float32)
    return actor


def _state():
    return CartPoleState((0.01, -0.02, 0.03, 0.04))


def _filled_memory(count=40):
    rng = random.Random(3)
    memory = Memory(64)
    for i in range(count):
        values = tuple(rng.uniform(-0.1, 0.1) for _ in range(4))
        following = tuple(rng.uniform(-0.1, 0.1) for _ in range(4))
        memory.push(
            CartPoleState(values),
            CartPoleState(following),
            CartPoleAction(i % 2),
            1.0,
            i % 10 == 9,
        )
    return memory


def _nets():
    return SACNets(TinyActor(), TinyCritic(), TinyCritic())


def test_config_defaults():
    config = SACTrainingConfig()
    assert config.gamma == pytest.approx(0.999)
    assert config.tau == pytest.approx(0.005)
    assert config.learning_rate == pytest.approx(0.001)
    assert config.min_probability == pytest.approx(1e-9)
    assert config.batch_size == 32
    assert config.clip_grad.threshold == 1.0


def test_temperature_starts_at_zero():
    temperature = SACTemperature()
    value = temperature.forward()
    assert value.shape == (1, 1)
    assert value.tolist() == [[0.0]]
    assert list(temperature.parameters()) == [value]


def test_nets_targets_are_independent_copies():
    nets = _nets()
    assert nets.critic_1 is not nets.critic_1_target
    assert np.array_equal(nets.critic_1.linear.weight.data, nets.critic_1_target.linear.weight.data)
    nets.critic_1.linear.weight.data = nets.critic_1.linear.weight.data + 1.0
    assert not np.array_equal(
        nets.critic_1.linear.weight.data, nets.critic_1_target.linear.weight.data
    )
    assert nets.temperature.forward().tolist() == [[0.0]]


def test_optimizer_with_clipping_shares_setting():
    config = SACTrainingConfig()
    optimizer = SACOptimizer.with_clipping(config.clip_grad)
    assert optimizer.actor_optimizer.grad_clipping == config.clip_grad
    assert optimizer.temperature_optimizer.grad_clipping == config.clip_grad
    assert optimizer.critic_1_optimizer is not optimizer.critic_2_optimizer


def test_agent_without_actor_cannot_react():
    agent = SAC(CartPole)
    assert agent.model() is None
    assert agent.react(_state()) is None


def test_react_follows_confident_actor():
    agent = SAC(CartPole, _biased_actor(100.0))
    assert agent.react(_state()) is CartPoleAction.RIGHT
    assert agent.react_with_model(_state(), _biased_actor(100.0)) is CartPoleAction.RIGHT


def test_react_with_exploration_greedy_and_random():
    agent = SAC(CartPole)
    actor = _biased_actor(5.0)
    assert agent.react_with_exploration(actor, _state(), -1.0) is CartPoleAction.RIGHT
    explored = {agent.react_with_exploration(actor, _state(), 2.0) for _ in range(200)}
    assert explored == {CartPoleAction.LEFT, CartPoleAction.RIGHT}


def test_train_updates_networks():
    agent = SAC(CartPole)
    nets = _nets()
    config = SACTrainingConfig(batch_size=8)
    optimizer = SACOptimizer.with_clipping(config.clip_grad)
    memory = _filled_memory()

    actor_before = nets.actor.linear.weight.data.copy()
    critic_before = nets.critic_1.linear.weight.data.copy()
    target_before = nets.critic_1_target.linear.weight.data.copy()

    result = agent.train(nets, memory, optimizer, config)

    assert result is nets
    assert not np.allclose(result.actor.linear.weight.data, actor_before)
    assert not np.allclose(result.critic_1.linear.weight.data, critic_before)

    temperature = result.temperature.forward().item()
    assert temperature < 0
    assert math.isclose(temperature, -config.learning_rate, rel_tol=0.05)

    new_critic = result.critic_1.linear.weight.data
    new_target = result.critic_1_target.linear.weight.data
    low = np.minimum(target_before, new_critic) - 1e-6
    high = np.maximum(target_before, new_critic) + 1e-6
    assert np.all((new_target >= low) & (new_target <= high))
    assert not np.allclose(new_target, target_before)


def test_train_without_target_raises():
    agent = SAC(CartPole)
    nets = _nets()
    nets.critic_1_target = None
    config = SACTrainingConfig(batch_size=8)
    with pytest.raises(ValueError, match="Critic 1"):
        agent.train(nets, _filled_memory(), SACOptimizer(), config)


def test_train_on_empty_memory_raises():
    agent = SAC(CartPole)
    with pytest.raises(ValueError):
        agent.train(_nets(), Memory(8), SACOptimizer(), SACTrainingConfig(batch_size=4))


def test_valid_returns_inference_copy():
    actor = _biased_actor(100.0)
    agent = SAC(CartPole)
    trained = agent.valid(actor)
    copy = trained.model()
    assert copy is not actor
    assert all(not p.requires_grad for p in copy.parameters())
    assert all(p.requires_grad for p in actor.parameters())
    assert trained.react(_state()) is CartPoleAction.RIGHT


def test_actor_forward_rows_sum_to_one():
    actor = TinyActor()
    output = actor.forward(Tensor(np.ones((3, 4), dtype=np.float32)))
    assert output.shape == (3, 2)
    assert np.allclose(output.data.sum(axis=1), 1.0)