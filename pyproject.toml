[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ndaccollector"
version = "0.1.0"
description = "Periodic collector for network group, metric and SIM data from NDAC REST APIs"
requires-python = ">=3.10"
keywords = ["ndac", "collector", "monitoring", "metrics", "alarms", "sims"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]
dependencies = [
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["ndaccollector"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
