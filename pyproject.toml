[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ftpmini"
version = "0.1.0"
description = "A small active-mode FTP server and interactive client with per-user directories"
requires-python = ">=3.10"
dependencies = []
keywords = ["ftp", "file-transfer", "server", "client", "active-mode"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ftpmini-server = "ftpmini.server:main"
ftpmini-client = "ftpmini.client:main"

[tool.hatch.build.targets.wheel]
packages = ["ftpmini"]

[tool.pytest.ini_options]
addopts = "-ra"
