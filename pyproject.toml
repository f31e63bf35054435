[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ztunnel"
version = "0.1.0"
description = "Node-level mesh proxy building blocks: RBAC policy matching, SOCKS5 handshake, trace context, traffic counters, readiness and shutdown handling"
requires-python = ">=3.10"
dependencies = []
keywords = ["proxy", "service-mesh", "rbac", "socks5", "traceparent", "metrics", "readiness"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["ztunnel"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
