[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "glibkit"
version = "0.1.0"
description = "Service toolkit: JSON-RPC request handling, token auth, AES-CBC helpers, TOML config, key locks, MQTT auth hooks and daemon control"
requires-python = ">=3.11"
keywords = ["json-rpc", "token", "aes", "config", "daemon", "mqtt", "keylock"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
]
dependencies = [
    "cryptography",
    "python-dotenv",
    "tomli-w",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
glibkit = "glibkit.daemon:main"

[tool.hatch.build.targets.wheel]
packages = ["glibkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
