"""Proximal policy optimisation agent with generalised advantage estimation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rlagents.base import Action, Agent, Environment, Model, State
from rlagents.memory import Memory, get_batch, sample_indices
from rlagents.nn import ELEM_TYPE, AdamW, GradientClipping, Reduction, Tensor, mse_loss
from rlagents.utils import (
    elementwise_min,
    get_elem,
    sample_action_from_tensor,
    to_action_tensor,
    to_not_done_tensor,
    to_reward_tensor,
    to_state_tensor,
    update_parameters,
)


@dataclass
class PPOTrainingConfig:
    """Hyper-parameters of a PPO training pass."""

    gamma: float = 0.99
    lambda_: float = 0.95
    epsilon_clip: float = 0.2
    critic_weight: float = 0.5
    entropy_weight: float = 0.01
    learning_rate: float = 0.001
    epochs: int = 8
    batch_size: int = 8
    clip_grad: GradientClipping | None = field(
        default_factory=lambda: GradientClipping(100.0)
    )


@dataclass
class PPOOutput:
    """Action probabilities and state values for a batch of states."""

    policies: Tensor
    values: Tensor


class PPOModel(Model, ABC):
    """An actor-critic network."""

    @abstractmethod
    def forward(self, x: Tensor) -> PPOOutput:
        """Policies and values for a batch of states."""

    def infer(self, x: Tensor) -> Tensor:
        """Action probabilities for a batch of states."""
        return self.forward(x).policies


@dataclass
class GAEOutput:
    expected_returns: Tensor
    advantages: Tensor


def get_gae(
    values: Tensor,
    rewards: Tensor,
    not_dones: Tensor,
    gamma: float,
    lambda_: float,
) -> GAEOutput | None:
    """Discounted returns and advantages, or None when an input is too short."""
    count = rewards.data.size
    returns = [0.0] * count
    advantages = [0.0] * count
    gamma = ELEM_TYPE(gamma)
    lambda_ = ELEM_TYPE(lambda_)
    running_return = ELEM_TYPE(0.0)
    running_advantage = ELEM_TYPE(0.0)

    for i in reversed(range(count)):
        reward = get_elem(i, rewards)
        not_done = get_elem(i, not_dones)
        value = get_elem(i, values)
        if reward is None or not_done is None or value is None:
            return None
        reward = ELEM_TYPE(reward)
        not_done = ELEM_TYPE(not_done)
        next_value = get_elem(i + 1, values)
        next_value = ELEM_TYPE(0.0 if next_value is None else next_value)

        running_return = reward + gamma * running_return * not_done
        running_advantage = (
            reward
            - ELEM_TYPE(value)
            + gamma * not_done * (next_value + lambda_ * running_advantage)
        )
        returns[i] = float(running_return)
        advantages[i] = float(running_advantage)

    return GAEOutput(
        Tensor(returns).reshape((count, 1)),
        Tensor(advantages).reshape((count, 1)),
    )


class PPO(Agent):
    """Samples actions from the policy of its actor-critic model."""

    def __init__(self, env_type: type[Environment], model: PPOModel | None = None) -> None:
        self.env_type = env_type
        self.model = model

    def react(self, state: State) -> Action | None:
        if self.model is None:
            return None
        output = self.model.infer(to_state_tensor(state).unsqueeze())
        return sample_action_from_tensor(output, self.env_type.action_type)

    def react_with_model(self, state: State, model: PPOModel) -> Action | None:
        policies = model.forward(to_state_tensor(state).unsqueeze()).policies
        return sample_action_from_tensor(policies, self.env_type.action_type)

    def train(
        self,
        policy_net: PPOModel,
        memory: Memory,
        optimizer: AdamW,
        config: PPOTrainingConfig,
    ) -> PPOModel:
        """Several epochs of clipped-objective updates over the whole memory.

        Raises ValueError when the memory is empty.
        """
        memory_indices = list(range(len(memory)))
        old = policy_net.forward(get_batch(memory.states(), memory_indices, to_state_tensor))
        old_policies = old.policies.detach()
        old_values = old.values.detach()

        gae = get_gae(
            old_values,
            get_batch(memory.rewards(), memory_indices, to_reward_tensor),
            get_batch(memory.dones(), memory_indices, to_not_done_tensor),
            config.gamma,
            config.lambda_,
        )
        if gae is None:
            return policy_net

        batches = len(memory) // config.batch_size
        for _ in range(config.epochs):
            for _ in range(batches):
                indices = sample_indices(memory_indices, config.batch_size)

                state_batch = get_batch(memory.states(), indices, to_state_tensor)
                action_batch = get_batch(memory.actions(), indices, to_action_tensor)
                old_policy_batch = old_policies.select(0, indices)
                advantage_batch = gae.advantages.select(0, indices)
                expected_return_batch = gae.expected_returns.select(0, indices).detach()

                output = policy_net.forward(state_batch)
                policy_batch = output.policies

                ratios = (policy_batch / old_policy_batch).gather(1, action_batch)
                clipped = ratios.clamp(1.0 - config.epsilon_clip, 1.0 + config.epsilon_clip)

                actor_loss = -elementwise_min(
                    ratios * advantage_batch, clipped * advantage_batch
                ).sum()
                critic_loss = mse_loss(expected_return_batch, output.values, Reduction.SUM)
                negative_entropy = -(policy_batch.log() * policy_batch).sum_dim(1).mean()

                loss = (
                    actor_loss
                    + critic_loss * config.critic_weight
                    + negative_entropy * config.entropy_weight
                )
                policy_net = update_parameters(
                    loss, policy_net, optimizer, config.learning_rate
                )
        return policy_net

    def valid(self, model: PPOModel) -> PPO:
        """An inference-only agent wrapping a copy of ``model``."""
        return PPO(self.env_type, model.valid())