[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memguard"
version = "0.1.0"
description = "Simulated guarded heap for tests: leak detection, buffer overrun checks and forced allocation failures"
requires-python = ">=3.10"
dependencies = []
keywords = ["testing", "memory", "leak detection", "buffer overrun", "allocator", "embedded"]
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
    "Topic :: Software Development :: Testing",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["memguard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
