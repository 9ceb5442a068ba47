import numpy as np
import pytest

from rlagents.dqn import DQN, DQNModel, DQNTrainingConfig
from rlagents.environments import CartPole, CartPoleAction, CartPoleState
from rlagents.memory import Memory
from rlagents.nn import AdamW, Linear, Tensor, soft_update_linear


class TinyQ(DQNModel):
    def __init__(self, layer=None):
        self.layer = layer if layer is not None else Linear(4, 2)

    def forward(self, x):
        return self.layer.forward(x)

    def soft_update(self, that, tau):
        return TinyQ(soft_update_linear(self.layer, that.layer, tau))


def right_biased():
    model = TinyQ()
    model.layer.weight = Tensor(np.zeros((4, 2)), requires_grad=True)
    model.layer.bias = Tensor([0.0, 1.0], requires_grad=True)
    return model


STATE = CartPoleState((0.1, 0.2, 0.3, 0.4))


def filled_memory(reward=1.0, count=8):
    memory = Memory(16)
    for _ in range(count):
        memory.push(STATE, STATE, CartPoleAction.RIGHT, reward, False)
    return memory


def test_react_picks_highest_value_action():
    agent = DQN(CartPole, right_biased())
    assert agent.react(STATE) is CartPoleAction.RIGHT


def test_react_without_model_returns_none():
    agent = DQN(CartPole, None)
    assert agent.react(STATE) is None


def test_exploration_zero_threshold_is_greedy():
    agent = DQN(CartPole, right_biased())
    actions = {agent.react_with_exploration(right_biased(), STATE, 0.0) for _ in range(20)}
    assert actions == {CartPoleAction.RIGHT}


def test_exploration_full_threshold_is_random():
    agent = DQN(CartPole, right_biased())
    actions = {agent.react_with_exploration(right_biased(), STATE, 1.0) for _ in range(200)}
    assert actions == {CartPoleAction.LEFT, CartPoleAction.RIGHT}


def test_train_with_full_tau_copies_policy_into_target():
    model = TinyQ()
    agent = DQN(CartPole, model)
    policy = model.clone()
    config = DQNTrainingConfig(tau=1.0, batch_size=4)
    policy = agent.train(policy, filled_memory(), AdamW(config.clip_grad), config)
    target = agent.model()
    assert np.allclose(target.layer.weight.data, policy.layer.weight.data)
    assert np.allclose(target.layer.bias.data, policy.layer.bias.data)


def test_train_with_zero_tau_keeps_target():
    model = TinyQ()
    before = model.layer.weight.data.copy()
    agent = DQN(CartPole, model)
    config = DQNTrainingConfig(tau=0.0, batch_size=4)
    policy = agent.train(model.clone(), filled_memory(), AdamW(config.clip_grad), config)
    assert np.allclose(agent.model().layer.weight.data, before)
    assert not np.allclose(policy.layer.weight.data, before)


def test_train_moves_q_value_towards_reward():
    model = TinyQ()
    agent = DQN(CartPole, model)
    policy = model.clone()
    config = DQNTrainingConfig(gamma=0.0, learning_rate=0.01, batch_size=4)
    optimizer = AdamW(None)
    memory = filled_memory(reward=1.0)
    for _ in range(500):
        policy = agent.train(policy, memory, optimizer, config)
    q_values = policy.forward(STATE.to_tensor().unsqueeze()).tolist()[0]
    assert q_values[int(CartPoleAction.RIGHT)] == pytest.approx(1.0, abs=0.1)


def test_train_without_target_raises():
    agent = DQN(CartPole, None)
    config = DQNTrainingConfig(batch_size=4)
    with pytest.raises(ValueError):
        agent.train(TinyQ(), filled_memory(), AdamW(None), config)


def test_valid_takes_over_target_network():
    model = right_biased()
    agent = DQN(CartPole, model)
    inference = agent.valid()
    assert agent.model() is None
    assert all(not p.requires_grad for p in inference.model().parameters())
    assert np.allclose(inference.model().layer.bias.data, model.layer.bias.data)
    assert inference.react(STATE) is CartPoleAction.RIGHT