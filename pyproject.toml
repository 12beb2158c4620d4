[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "emberkv"
version = "0.1.0"
description = "A small asyncio key-value server speaking the RESP protocol, with streams, RDB snapshot loading and a replica handshake"
requires-python = ">=3.10"
dependencies = []
keywords = ["key-value", "resp", "server", "database", "streams", "rdb", "asyncio"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
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
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
emberkv = "emberkv.server:main"

[tool.hatch.build.targets.wheel]
packages = ["emberkv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
