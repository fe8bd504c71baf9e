[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "snlds"
version = "0.1.0"
description = "Dataset loading, training configuration, run snapshots and visual logging for switching non-linear dynamical system experiments"
requires-python = ">=3.11"
keywords = [
    "snlds",
    "switching dynamical systems",
    "markov switching",
    "time series",
    "safetensors",
    "visualisation",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
snlds-viz = "snlds.viz_cli:main"

[tool.hatch.build.targets.wheel]
packages = ["snlds"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
