[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sensorhub"
version = "0.1.0"
description = "TCP gateway that publishes temperature and humidity readings in shared memory and relays commands to a sensor node"
requires-python = ">=3.10"
dependencies = []
keywords = ["sensor", "temperature", "humidity", "gateway", "shared-memory", "tcp"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Home Automation",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
sensorhub = "sensorhub.server:main"

[tool.hatch.build.targets.wheel]
packages = ["sensorhub"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
