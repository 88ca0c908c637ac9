[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "portmapper"
version = "0.2.1"
description = "Simple TCP and UDP port mapping driven by a plain-text rules file"
requires-python = ">=3.11"
dependencies = []
keywords = ["port", "mapping", "forwarding", "proxy", "tcp", "udp", "asyncio"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
portmapper = "portmapper.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["portmapper"]

[tool.pytest.ini_options]
addopts = "-ra"
