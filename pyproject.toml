[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dkod"
version = "0.1.1"
description = "Building blocks for capturing Claude Code sessions in a git repository"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "git",
    "ai",
    "agent",
    "session",
    "capture",
    "transcript",
    "claude-code",
    "hooks",
    "ndjson",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Version Control :: Git",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["dkod"]

[tool.hatch.build.targets.sdist]
include = ["dkod", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
