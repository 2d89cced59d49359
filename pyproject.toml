[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evpipeline"
version = "0.1.0"
description = "In-process event pipeline: pub/sub bus, error bus, ordered event store, registry, state machine and metrics"
requires-python = ">=3.10"
dependencies = []
keywords = ["events", "pubsub", "event-bus", "state-machine", "registry", "metrics"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["evpipeline"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
