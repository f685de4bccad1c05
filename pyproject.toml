[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "traveller"
version = "0.1.0"
description = "Actor devices, a select-based event loop, socket helpers and a RESP-style service server"
requires-python = ">=3.10"
dependencies = []
keywords = ["event-loop", "actor", "resp", "networking", "sockets", "select"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["traveller"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
