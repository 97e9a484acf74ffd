[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slatecore"
version = "0.1.0"
description = "Building blocks of a log-structured key-value store: bloom filters, row codec, memtables, merge iterators, versioned manifests and size-tiered compaction scheduling"
requires-python = ">=3.10"
dependencies = [
    "sortedcontainers",
]
keywords = ["lsm", "storage-engine", "bloom-filter", "memtable", "compaction", "manifest", "key-value"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["slatecore"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
