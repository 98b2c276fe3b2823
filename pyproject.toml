[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chatlogkit"
version = "0.1.0"
description = "Locate WeChat desktop accounts, recover their database keys and decrypt their encrypted SQLite message stores"
requires-python = ">=3.10"
keywords = ["wechat", "chat", "sqlite", "decryption", "chat-history", "key-recovery"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: MacOS",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Chat",
    "Topic :: Database",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "cryptography",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["chatlogkit"]

[tool.hatch.build.targets.sdist]
include = ["chatlogkit", "tests", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
