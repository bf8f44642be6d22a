[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sfxgateway"
version = "0.1.0"
description = "Decoders and span processing sinks for SignalFx datapoint, event and Jaeger trace ingest"
requires-python = ">=3.10"
dependencies = []
keywords = ["signalfx", "metrics", "tracing", "jaeger", "ingest", "spans"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sfxgateway"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
