[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "govisual"
version = "0.1.0"
description = "WSGI middleware that records HTTP requests and serves a live dashboard to inspect them"
requires-python = ">=3.10"
dependencies = [
    "redis",
]
keywords = ["wsgi", "middleware", "http", "requests", "dashboard", "debugging", "inspection"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
    "Topic :: Internet :: WWW/HTTP",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
govisual-demo = "govisual.example:main"

[tool.hatch.build.targets.wheel]
packages = ["govisual"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
