[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blocktools"
version = "0.1.0"
description = "Block device probing, fstab handling and mount helpers for embedded Linux systems"
requires-python = ">=3.10"
dependencies = []
keywords = ["block", "filesystem", "fstab", "mount", "swap", "superblock", "ext4", "btrfs", "exfat", "f2fs"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
block = "blocktools.block:main"
swapon = "blocktools.block:main"
swapoff = "blocktools.block:main"

[tool.hatch.build.targets.wheel]
packages = ["blocktools"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
