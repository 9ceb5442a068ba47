"""Soft actor-critic agent for discrete actions with a learned temperature."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from rlagents.base import Action, Agent, Environment, Model, State
from rlagents.memory import Memory, get_batch, sample_indices
from rlagents.nn import AdamW, GradientClipping, Module, Reduction, Tensor, mse_loss
from rlagents.utils import (
    convert_tensor_to_action,
    elementwise_min,
    sample_action_from_tensor,
    to_action_tensor,
    to_not_done_tensor,
    to_reward_tensor,
    to_state_tensor,
    update_parameters,
)


@dataclass
class SACTrainingConfig:
    """Hyper-parameters of one SAC training step."""

    gamma: float = 0.999
    tau: float = 0.005
    learning_rate: float = 0.001
    min_probability: float = 1e-9
    batch_size: int = 32
    clip_grad: GradientClipping | None = field(
        default_factory=lambda: GradientClipping(1.0)
    )


class SACActor(Model, ABC):
    """A policy network mapping a batch of states to action probabilities."""


class SACCritic(Model, ABC):
    """A Q-value network mapping a batch of states to one value per action."""

    @abstractmethod
    def soft_update(self, that: SACCritic, tau: float) -> SACCritic:
        """A new critic blending this one with ``that``: ``self * (1 - tau) + that * tau``."""


class SACTemperature(Module):
    """The trainable logarithm of the entropy temperature, starting at zero."""

    def __init__(self) -> None:
        self.temperature = Tensor([[0.0]], requires_grad=True)

    def forward(self) -> Tensor:
        return self.temperature


class SACNets:
    """The actor, two critics with their target copies, and the temperature."""

    def __init__(self, actor: SACActor, critic_1: SACCritic, critic_2: SACCritic) -> None:
        self.actor = actor
        self.critic_1 = critic_1.clone()
        self.critic_1_target: SACCritic | None = critic_1
        self.critic_2 = critic_2.clone()
        self.critic_2_target: SACCritic | None = critic_2
        self.temperature = SACTemperature()


@dataclass
class SACOptimizer:
    """One optimiser for each trained network."""

    actor_optimizer: AdamW = field(default_factory=AdamW)
    critic_1_optimizer: AdamW = field(default_factory=AdamW)
    critic_2_optimizer: AdamW = field(default_factory=AdamW)
    temperature_optimizer: AdamW = field(default_factory=AdamW)

    @classmethod
    def with_clipping(cls, grad_clipping: GradientClipping | None) -> SACOptimizer:
        """Four fresh optimisers sharing one gradient clipping setting."""
        return cls(
            AdamW(grad_clipping),
            AdamW(grad_clipping),
            AdamW(grad_clipping),
            AdamW(grad_clipping),
        )


def _target(critic: SACCritic | None, name: str) -> SACCritic:
    if critic is None:
        raise ValueError(f"{name} target is not initialized")
    return critic


class SAC(Agent):
    """Samples actions from the probabilities given by its actor."""

    def __init__(self, env_type: type[Environment], actor: SACActor | None = None) -> None:
        self.env_type = env_type
        self._actor = actor

    def model(self) -> SACActor | None:
        return self._actor

    def react(self, state: State) -> Action | None:
        if self._actor is None:
            return None
        output = self._actor.infer(to_state_tensor(state).unsqueeze())
        return sample_action_from_tensor(output, self.env_type.action_type)

    def react_with_model(self, state: State, actor: SACActor) -> Action | None:
        output = actor.forward(to_state_tensor(state).unsqueeze())
        return sample_action_from_tensor(output, self.env_type.action_type)

    def react_with_exploration(
        self, policy_net: SACActor, state: State, eps_threshold: float
    ) -> Action:
        """Most likely action of ``policy_net``, or a random one with probability ``eps_threshold``."""
        if random.random() > eps_threshold:
            output = policy_net.forward(to_state_tensor(state).unsqueeze())
            return convert_tensor_to_action(output, self.env_type.action_type)
        return self.env_type.action_type.random()

    def train(
        self,
        nets: SACNets,
        memory: Memory,
        optimizer: SACOptimizer,
        config: SACTrainingConfig,
    ) -> SACNets:
        """Update actor, temperature and both critics on one sampled batch.

        Raises ValueError when the memory is empty or a critic target is missing.
        """
        action_dim = self.env_type.action_type.size()
        indices = sample_indices(range(len(memory)), config.batch_size)
        state_batch = get_batch(memory.states(), indices, to_state_tensor)

        action_prob = nets.actor.forward(state_batch)
        log_prob = action_prob.clamp_min(config.min_probability).log()
        q_min = elementwise_min(
            nets.critic_1.forward(state_batch), nets.critic_2.forward(state_batch)
        )
        log_alpha = nets.temperature.forward()
        alpha = log_alpha.exp()
        actor_loss = (action_prob * (alpha * log_prob - q_min)).sum_dim(1).mean()
        nets.actor = update_parameters(
            actor_loss, nets.actor, optimizer.actor_optimizer, config.learning_rate
        )

        entropy = (log_prob * action_prob).sum_dim(1).detach()
        temperature_loss = -(log_alpha * (entropy - float(action_dim))).mean()
        nets.temperature = update_parameters(
            temperature_loss,
            nets.temperature,
            optimizer.temperature_optimizer,
            config.learning_rate,
        )

        action_batch = get_batch(memory.actions(), indices, to_action_tensor)
        next_state_batch = get_batch(memory.next_states(), indices, to_state_tensor)
        reward_batch = get_batch(memory.rewards(), indices, to_reward_tensor)
        not_done_batch = get_batch(memory.dones(), indices, to_not_done_tensor)

        next_action_prob = nets.actor.clone().no_grad().forward(next_state_batch)
        q1_target_next = (
            _target(nets.critic_1_target, "Critic 1").clone().no_grad().forward(next_state_batch)
        )
        q2_target_next = (
            _target(nets.critic_2_target, "Critic 2").clone().no_grad().forward(next_state_batch)
        )
        q_min_target_next = elementwise_min(q1_target_next, q2_target_next)
        q_next = next_action_prob * (q_min_target_next - alpha.detach() * entropy)
        q_target = reward_batch + (not_done_batch * config.gamma) * q_next.sum_dim(1).detach()

        q1 = nets.critic_1.forward(state_batch).gather(1, action_batch)
        critic_1_loss = mse_loss(q_target, q1, Reduction.SUM)
        nets.critic_1 = update_parameters(
            critic_1_loss, nets.critic_1, optimizer.critic_1_optimizer, config.learning_rate
        )

        q2 = nets.critic_2.forward(state_batch).gather(1, action_batch)
        critic_2_loss = mse_loss(q_target, q2, Reduction.SUM)
        nets.critic_2 = update_parameters(
            critic_2_loss, nets.critic_2, optimizer.critic_2_optimizer, config.learning_rate
        )

        if nets.critic_1_target is not None:
            nets.critic_1_target = nets.critic_1_target.soft_update(nets.critic_1, config.tau)
        if nets.critic_2_target is not None:
            nets.critic_2_target = nets.critic_2_target.soft_update(nets.critic_2, config.tau)
        return nets

    def valid(self, actor: SACActor) -> SAC:
        """An inference-only agent wrapping a copy of ``actor``."""
        return SAC(self.env_type, actor.valid())