"""Deep Q-network agent with a softly updated target network."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rlagents.base import Action, Agent, Environment, Model, State
from rlagents.memory import Memory, get_batch, sample_indices
from rlagents.nn import AdamW, GradientClipping, Reduction, Tensor, mse_loss
from rlagents.utils import (
    convert_tensor_to_action,
    to_action_tensor,
    to_not_done_tensor,
    to_reward_tensor,
    to_state_tensor,
    update_parameters,
)


@dataclass
class DQNTrainingConfig:
    """Hyper-parameters of one DQN training step."""

    gamma: float = 0.999
    tau: float = 0.005
    learning_rate: float = 0.001
    batch_size: int = 32
    clip_grad: GradientClipping | None = field(
        default_factory=lambda: GradientClipping(100.0)
    )


class DQNModel(Model, ABC):
    """A Q-value network mapping a batch of states to one value per action."""

    @abstractmethod
    def soft_update(self, that: DQNModel, tau: float) -> DQNModel:
        """A new model blending this one with ``that``: ``self * (1 - tau) + that * tau``."""


class DQN(Agent):
    """Acts greedily on the Q-values of its target network."""

    def __init__(self, env_type: type[Environment], model: DQNModel | None) -> None:
        self.env_type = env_type
        self._target_net = model

    def model(self) -> DQNModel | None:
        return self._target_net

    def react(self, state: State) -> Action | None:
        if self._target_net is None:
            return None
        output = self._target_net.infer(to_state_tensor(state).unsqueeze())
        return convert_tensor_to_action(output, self.env_type.action_type)

    def react_with_exploration(
        self, policy_net: DQNModel, state: State, eps_threshold: float
    ) -> Action:
        """Greedy action of ``policy_net``, or a random one with probability ``eps_threshold``."""
        if random.random() > eps_threshold:
            output = policy_net.forward(to_state_tensor(state).unsqueeze())
            return convert_tensor_to_action(output, self.env_type.action_type)
        return self.env_type.action_type.random()

    def _take_target(self) -> DQNModel:
        target = self._target_net
        if target is None:
            raise ValueError("target network is not set")
        self._target_net = None
        return target

    def train(
        self,
        policy_net: DQNModel,
        memory: Memory,
        optimizer: AdamW,
        config: DQNTrainingConfig,
    ) -> DQNModel:
        """Run one optimisation step on a sampled batch and soft-update the target."""
        indices = sample_indices(range(len(memory)), config.batch_size)
        state_batch = get_batch(memory.states(), indices, to_state_tensor)
        action_batch = get_batch(memory.actions(), indices, to_action_tensor)
        state_action_values = policy_net.forward(state_batch).gather(1, action_batch)

        next_state_batch = get_batch(memory.next_states(), indices, to_state_tensor)
        target_net = self._take_target()
        next_state_values: Tensor = target_net.forward(next_state_batch).max_dim(1).detach()

        not_done_batch = get_batch(memory.dones(), indices, to_not_done_tensor)
        reward_batch = get_batch(memory.rewards(), indices, to_reward_tensor)

        expected = (next_state_values * not_done_batch) * config.gamma + reward_batch
        loss = mse_loss(state_action_values, expected, Reduction.MEAN)

        policy_net = update_parameters(loss, policy_net, optimizer, config.learning_rate)
        self._target_net = target_net.soft_update(policy_net, config.tau)
        return policy_net

    def valid(self) -> DQN:
        """An inference-only agent holding this agent's target network, which it takes over."""
        return DQN(self.env_type, self._take_target().valid())