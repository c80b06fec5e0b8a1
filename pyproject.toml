[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "clusterkit"
version = "0.1.0"
description = "Building blocks for distributed systems: SWIM membership, consistent hashing, quorum replication, storage, sagas and in-memory RPC"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed",
    "swim",
    "membership",
    "consistent-hashing",
    "quorum",
    "replication",
    "saga",
    "rpc",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "hypothesis",
]

[tool.hatch.build.targets.wheel]
packages = ["clusterkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
