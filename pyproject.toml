[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "loratracker"
version = "1.0.0"
description = "Authenticated LoRa tracker ping/pong packets, redundant state storage and the tracker wake-up cycle"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["lora", "tracker", "aes-cmac", "telemetry", "fram", "embedded"]
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
    "Topic :: Communications :: Ham Radio",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["loratracker"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
