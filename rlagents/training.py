"""Ready-made networks, training loops for each agent, and a command to run them."""

from __future__ import annotations

import argparse
import math
from collections.abc import Callable, Sequence

from rlagents.base import Agent, Environment
from rlagents.dqn import DQN, DQNModel, DQNTrainingConfig
from rlagents.environments import CartPole, MountainCar
from rlagents.memory import Memory
from rlagents.nn import AdamW, Linear, Tensor, XavierUniform, relu, soft_update_linear, softmax
from rlagents.ppo import PPO, PPOModel, PPOOutput, PPOTrainingConfig
from rlagents.sac import (
    SAC,
    SACActor,
    SACCritic,
    SACNets,
    SACOptimizer,
    SACTrainingConfig,
)

DQN_MEMORY_SIZE = 4096
DQN_DENSE_SIZE = 128
EPS_DECAY = 1000.0
EPS_START = 0.9
EPS_END = 0.05

PPO_MEMORY_SIZE = 512
PPO_DENSE_SIZE = 128

SAC_MEMORY_SIZE = 4096
SAC_DENSE_SIZE = 32


def _report(episode: int, reward: float, duration: int) -> None:
    print(f'{{"episode": {episode}, "reward": {reward:.4f}, "duration": {duration}}}')


class _ThreeLayer:
    """Shared construction and soft update for three stacked linear layers."""

    linear_0: Linear
    linear_1: Linear
    linear_2: Linear

    def _build(self, input_size: int, dense_size: int, output_size: int) -> None:
        self.linear_0 = Linear(input_size, dense_size)
        self.linear_1 = Linear(dense_size, dense_size)
        self.linear_2 = Linear(dense_size, output_size)

    def _hidden(self, x: Tensor) -> Tensor:
        return relu(self.linear_1.forward(relu(self.linear_0.forward(x))))

    def _blend(self, that: _ThreeLayer, tau: float):
        blended = type(self).__new__(type(self))
        blended.linear_0 = soft_update_linear(self.linear_0, that.linear_0, tau)
        blended.linear_1 = soft_update_linear(self.linear_1, that.linear_1, tau)
        blended.linear_2 = soft_update_linear(self.linear_2, that.linear_2, tau)
        return blended


class DQNNet(_ThreeLayer, DQNModel):
    """Q-network of two hidden ReLU layers; the output is passed through ReLU too."""

    def __init__(self, input_size: int, dense_size: int, output_size: int) -> None:
        self._build(input_size, dense_size, output_size)

    def forward(self, x: Tensor) -> Tensor:
        return relu(self.linear_2.forward(self._hidden(x)))

    def infer(self, x: Tensor) -> Tensor:
        return self.forward(x)

    def soft_update(self, that: DQNNet, tau: float) -> DQNNet:
        return self._blend(that, tau)


class PPONet(PPOModel):
    """Actor-critic with one shared hidden layer and Xavier-initialised weights."""

    def __init__(self, input_size: int, dense_size: int, output_size: int) -> None:
        initializer = XavierUniform(gain=1.0)
        self.linear = Linear(input_size, dense_size, initializer)
        self.linear_actor = Linear(dense_size, output_size, initializer)
        self.linear_critic = Linear(dense_size, 1, initializer)

    def forward(self, x: Tensor) -> PPOOutput:
        hidden = relu(self.linear.forward(x))
        policies = softmax(self.linear_actor.forward(hidden), 1)
        values = self.linear_critic.forward(hidden)
        return PPOOutput(policies, values)

    def infer(self, x: Tensor) -> Tensor:
        hidden = relu(self.linear.forward(x))
        return softmax(self.linear_actor.forward(hidden), 1)


class SACActorNet(_ThreeLayer, SACActor):
    """Policy network producing action probabilities."""

    def __init__(self, input_size: int, dense_size: int, output_size: int) -> None:
        self._build(input_size, dense_size, output_size)

    def forward(self, x: Tensor) -> Tensor:
        return softmax(self.linear_2.forward(self._hidden(x)), 1)

    def infer(self, x: Tensor) -> Tensor:
        return self.forward(x)


class SACCriticNet(_ThreeLayer, SACCritic):
    """Q-network with a linear output layer."""

    def __init__(self, input_size: int, dense_size: int, output_size: int) -> None:
        self._build(input_size, dense_size, output_size)

    def forward(self, x: Tensor) -> Tensor:
        return self.linear_2.forward(self._hidden(x))

    def infer(self, x: Tensor) -> Tensor:
        return self.forward(x)

    def soft_update(self, that: SACCriticNet, tau: float) -> SACCriticNet:
        return self._blend(that, tau)


def run_dqn(env_type: type[Environment], num_episodes: int, visualized: bool = False) -> DQN:
    """Train a DQN agent with epsilon-greedy exploration; returns an inference agent."""
    env = env_type(visualized)
    model = DQNNet(
        env_type.state_type.size(), DQN_DENSE_SIZE, env_type.action_type.size()
    )
    agent = DQN(env_type, model)
    config = DQNTrainingConfig()
    memory = Memory(DQN_MEMORY_SIZE)
    optimizer = AdamW(config.clip_grad)
    policy_net = agent.model().clone()
    step = 0

    for episode in range(num_episodes):
        episode_done = False
        episode_reward = 0.0
        episode_duration = 0
        state = env.state()

        while not episode_done:
            eps_threshold = EPS_END + (EPS_START - EPS_END) * math.exp(-step / EPS_DECAY)
            action = agent.react_with_exploration(policy_net, state, eps_threshold)
            snapshot = env.step(action)
            episode_reward += float(snapshot.reward)

            memory.push(state, snapshot.state, action, snapshot.reward, snapshot.done)

            if config.batch_size < len(memory):
                policy_net = agent.train(policy_net, memory, optimizer, config)

            step += 1
            episode_duration += 1

            if snapshot.done or episode_duration >= env_type.MAX_STEPS:
                env.reset()
                episode_done = True
                _report(episode, episode_reward, episode_duration)
            else:
                state = snapshot.state

    return agent.valid()


def run_ppo(env_type: type[Environment], num_episodes: int, visualized: bool = False) -> PPO:
    """Train a PPO agent on whole episodes; returns an inference agent."""
    env = env_type(visualized)
    model = PPONet(env_type.state_type.size(), PPO_DENSE_SIZE, env_type.action_type.size())
    agent = PPO(env_type)
    config = PPOTrainingConfig()
    optimizer = AdamW(config.clip_grad)
    memory = Memory(PPO_MEMORY_SIZE)

    for episode in range(num_episodes):
        episode_done = False
        episode_reward = 0.0
        episode_duration = 0

        env.reset()
        while not episode_done:
            state = env.state()
            action = agent.react_with_model(state, model)
            if action is None:
                continue
            snapshot = env.step(action)
            episode_reward += float(snapshot.reward)

            memory.push(state, snapshot.state, action, snapshot.reward, snapshot.done)

            episode_duration += 1
            episode_done = snapshot.done or episode_duration >= env_type.MAX_STEPS
        _report(episode, episode_reward, episode_duration)

        model = agent.train(model, memory, optimizer, config)
        memory.clear()

    return agent.valid(model)


def run_sac(env_type: type[Environment], num_episodes: int, visualized: bool = False) -> SAC:
    """Train a soft actor-critic agent; returns an inference agent."""
    env = env_type(visualized)
    state_dim = env_type.state_type.size()
    action_dim = env_type.action_type.size()

    nets = SACNets(
        SACActorNet(state_dim, SAC_DENSE_SIZE, action_dim),
        SACCriticNet(state_dim, SAC_DENSE_SIZE, action_dim),
        SACCriticNet(state_dim, SAC_DENSE_SIZE, action_dim),
    )
    agent = SAC(env_type)
    config = SACTrainingConfig()
    memory = Memory(SAC_MEMORY_SIZE)
    optimizer = SACOptimizer.with_clipping(config.clip_grad)

    for episode in range(num_episodes):
        episode_done = False
        episode_reward = 0.0
        episode_duration = 0
        state = env.state()

        while not episode_done:
            action = agent.react_with_model(state, nets.actor)
            if action is None:
                continue
            snapshot = env.step(action)
            episode_reward += float(snapshot.reward)

            memory.push(state, snapshot.state, action, snapshot.reward, snapshot.done)

            if config.batch_size < len(memory):
                nets = agent.train(nets, memory, optimizer, config)

            episode_duration += 1

            if snapshot.done or episode_duration >= env_type.MAX_STEPS:
                env.reset()
                episode_done = True
                _report(episode, episode_reward, episode_duration)
            else:
                state = snapshot.state

    return agent.valid(nets.actor)


def demo_model(env_type: type[Environment], agent: Agent) -> None:
    """Play one visualised episode with ``agent`` until the environment is done."""
    env = env_type(True)
    state = env.state()
    done = False
    while not done:
        action = agent.react(state)
        if action is not None:
            snapshot = env.step(action)
            state = snapshot.state
            done = snapshot.done


_ALGORITHMS: dict[str, Callable[[type[Environment], int, bool], Agent]] = {
    "dqn": run_dqn,
    "ppo": run_ppo,
    "sac": run_sac,
}

_ENVIRONMENTS: dict[str, type[Environment]] = {
    "cartpole": CartPole,
    "mountaincar": MountainCar,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Train an agent, report each episode as a JSON line, then show it playing."""
    parser = argparse.ArgumentParser(prog="rlagents", description=main.__doc__)
    parser.add_argument("--algorithm", choices=sorted(_ALGORITHMS), default="dqn")
    parser.add_argument("--env", choices=sorted(_ENVIRONMENTS), default="cartpole")
    parser.add_argument("--episodes", type=int, default=512)
    parser.add_argument("--visualized", action="store_true")
    args = parser.parse_args(argv)
    if args.episodes < 0:
        parser.error("--episodes must not be negative")

    env_type = _ENVIRONMENTS[args.env]
    agent = _ALGORITHMS[args.algorithm](env_type, args.episodes, args.visualized)
    demo_model(env_type, agent)
    return 0