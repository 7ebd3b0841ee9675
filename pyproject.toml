[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vroom"
version = "0.1.0"
description = "Profile call-tree analysis: frame classification, function metrics and performance issue detection."
requires-python = ">=3.10"
dependencies = []
keywords = ["profiling", "call tree", "stack trace", "performance", "issue detection"]
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
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vroom"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
