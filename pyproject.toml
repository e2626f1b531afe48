[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miniredis"
version = "0.1.0"
description = "A small asyncio server and client for a subset of the Redis protocol"
requires-python = ">=3.11"
dependencies = []
keywords = ["redis", "resp", "asyncio", "key-value", "pubsub", "server", "client"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
miniredis-server = "miniredis.cli:server_main"
miniredis-client = "miniredis.cli:client_main"

[tool.hatch.build.targets.wheel]
packages = ["miniredis"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
strict = true
