[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "swimlist"
version = "0.1.0"
description = "Building blocks for SWIM-style cluster membership: round-trip tracking, scheduling, metrics and encrypted transports."
requires-python = ">=3.11"
dependencies = [
    "cryptography",
]
keywords = ["swim", "membership", "gossip", "failure-detection", "distributed-systems", "cluster"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["swimlist"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
