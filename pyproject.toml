[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "serialink"
version = "0.1.0"
description = "Stop-and-wait link-layer file transfer over serial ports, with a virtual cable emulator"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "serial",
    "link layer",
    "framing",
    "byte stuffing",
    "file transfer",
    "stop-and-wait",
    "socat",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications",
    "Topic :: Terminals :: Serial",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
serialink = "serialink.cli:main"
serialink-cable = "serialink.cable:main"

[tool.hatch.build.targets.wheel]
packages = ["serialink"]

[tool.pytest.ini_options]
addopts = "-ra"
