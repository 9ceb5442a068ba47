[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rlagents"
version = "0.1.0"
description = "DQN, PPO and SAC agents for discrete actions, with a small NumPy autodiff core and classic-control environments"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "reinforcement-learning",
    "dqn",
    "ppo",
    "sac",
    "cartpole",
    "mountain-car",
    "autodiff",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
rlagents-train = "rlagents.training:main"

[tool.hatch.build.targets.wheel]
packages = ["rlagents"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
