"""DQN, PPO and SAC agents, classic-control environments and a NumPy autodiff core."""

__version__ = "0.1.0"