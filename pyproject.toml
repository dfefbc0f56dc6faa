[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "svcharness"
version = "0.1.0"
description = "Command line client for starting, stopping and inspecting services through a TLS WebSocket executor daemon"
requires-python = ">=3.10"
keywords = ["orchestration", "services", "daemon", "websocket", "dependencies", "tls"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml>=6.0",
    "websockets>=12.0",
    "cryptography>=41.0",
    "platformdirs>=3.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
harness = "svcharness.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["svcharness"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
