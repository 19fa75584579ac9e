[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memkv"
version = "0.1.0"
description = "An in-memory key-value database engine with a Redis-compatible command interface"
requires-python = ">=3.10"
dependencies = []
keywords = ["database", "key-value", "in-memory", "redis", "resp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["memkv"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
