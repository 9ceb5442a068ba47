# rlagents

Reinforcement learning agents for discrete-action environments, built on a
small NumPy tensor library with reverse-mode automatic differentiation.

## What is in the package

- `rlagents.nn` – `Tensor` (a NumPy array that records operations and
  supports `backward()`), `relu`, `softmax`, `cat`, `mse_loss` with
  `Reduction.MEAN` / `Reduction.SUM`, the `Module` base class (`parameters()`,
  `clone()`, `no_grad()`, `valid()`), the `Linear` layer with
  `KaimingUniform` (default) or `XavierUniform` initialisers, the `AdamW`
  optimiser with optional `GradientClipping` (by value, or by L2 norm with
  `by_norm=True`), and `soft_update_linear` for blending two layers.
- `rlagents.base` – the abstractions: `Action` (an `IntEnum` with `random()`,
  `enumerate()` and `size()`), `State`, `Snapshot` (`state`, `reward`,
  `done`), `Environment`, `Agent` and `Model`.
- `rlagents.environments` – `CartPole` (at most 500 steps per episode,
  actions `CartPoleAction.LEFT` / `RIGHT`, reward 1.0 per step) and
  `MountainCar` (at most 200 steps per episode, three
  `MountainCarAction`s, reward -1.0 per step), both simulated in plain
  Python, with their state types `CartPoleState` and `MountainCarState`.
- `rlagents.memory` – `Memory`, fixed-capacity ring buffers of transitions
  (the oldest are dropped when full), plus `sample_indices` (uniform, with
  replacement) and `get_batch` (stacks converted items into a 2-D tensor).
- `rlagents.utils` – conversions between states, actions, rewards and done
  flags and tensors, greedy and sampled action selection, `elementwise_min`
  and `update_parameters`.
- `rlagents.dqn` – `DQN`, `DQNModel`, `DQNTrainingConfig`
  (gamma 0.999, tau 0.005, learning rate 0.001, batch size 32, gradients
  clipped at 100).
- `rlagents.ppo` – `PPO`, `PPOModel`, `PPOOutput`, `PPOTrainingConfig`
  (gamma 0.99, lambda 0.95, clip 0.2, critic weight 0.5, entropy weight
  0.01, learning rate 0.001, 8 epochs, batch size 8, gradients clipped at
  100), and `get_gae` for generalised advantage estimation.
- `rlagents.sac` – `SAC`, `SACActor`, `SACCritic`, `SACNets`,
  `SACTemperature`, `SACOptimizer`, `SACTrainingConfig` (gamma 0.999,
  tau 0.005, learning rate 0.001, minimum probability 1e-9, batch size 32,
  gradients clipped at 1).
- `rlagents.training` – ready-made networks (`DQNNet`, `PPONet`,
  `SACActorNet`, `SACCriticNet`), the training loops `run_dqn`, `run_ppo`
  and `run_sac`, `demo_model`, and the `main` command.

## Installation

```
pip install .
```

The only runtime dependency is NumPy. To run the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
rlagents-train [--algorithm {dqn,ppo,sac}] [--env {cartpole,mountaincar}]
               [--episodes N] [--visualized]
```

With no options it trains a DQN agent on `cartpole` for 512 episodes, then
plays one episode with the trained agent. During training one JSON line is
printed per episode:

```
{"episode": 0, "reward": 14.0000, "duration": 14}
```

With `--visualized`, every training step also writes a one-line text
picture of the environment to standard error. The final demonstration
episode always does so.

## Using the library

```python
from rlagents.environments import CartPole
from rlagents.training import run_dqn, run_ppo, run_sac, demo_model

agent = run_dqn(CartPole, 200, False)
demo_model(CartPole, agent)

ppo_agent = run_ppo(CartPole, 100, False)
sac_agent = run_sac(CartPole, 100, False)
```

A trained agent's `react(state)` returns an action for the state, or `None`
when it has no model or (for PPO and SAC) the model's output cannot be used
as sampling weights.

### Writing your own loop

```python
import math

from rlagents.dqn import DQN, DQNTrainingConfig
from rlagents.environments import CartPole, CartPoleAction, CartPoleState
from rlagents.memory import Memory
from rlagents.nn import AdamW
from rlagents.training import DQNNet

env = CartPole(False)
model = DQNNet(CartPoleState.size(), 128, CartPoleAction.size())
agent = DQN(CartPole, model)
config = DQNTrainingConfig()
memory = Memory(4096)
optimizer = AdamW(config.clip_grad)
policy_net = agent.model().clone()

step = 0
state = env.state()
for _ in range(1000):
    eps = 0.05 + (0.9 - 0.05) * math.exp(-step / 1000.0)
    action = agent.react_with_exploration(policy_net, state, eps)
    snapshot = env.step(action)
    memory.push(state, snapshot.state, action, snapshot.reward, snapshot.done)
    if config.batch_size < len(memory):
        policy_net = agent.train(policy_net, memory, optimizer, config)
    step += 1
    if snapshot.done:
        env.reset()
        state = env.state()
    else:
        state = snapshot.state

trained = agent.valid()
```

`DQN.valid()` hands the target network over to the returned agent, so the
training agent has no target network afterwards.

### Your own environment

Subclass `Action`, `State` and `Environment` from `rlagents.base`. An
`Action` subclass lists its members with values `0..n-1`. A `State`
implements `to_tensor()` (a 1-D tensor) and the class method `size()`. An
`Environment` sets the class attributes `state_type`, `action_type` and,
optionally, `MAX_STEPS`, and implements `state()`, `reset()` and
`step(action)`, the last two returning a `Snapshot`.

### Your own networks

Subclass `DQNModel` (with `soft_update(that, tau)`), `PPOModel` (whose
`forward` returns a `PPOOutput` of action probabilities and state values),
`SACActor` or `SACCritic` (with `soft_update(that, tau)`), and implement
`forward(x)`; `infer(x)` defaults to `forward(x)` (for `PPOModel`, to the
policies). Tensors and modules stored as attributes, or in lists and tuples,
are found as parameters automatically. `soft_update_linear` blends two
`Linear` layers as `this * (1 - tau) + that * tau`.

## Limitations

- Computation runs on the CPU through NumPy only; there is no GPU support.
- Trained models cannot be saved to or loaded from disk.
- The "visualised" mode is a single line of text on standard error, not a
  graphical window.