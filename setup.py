#!/usr/bin/env python3

import tomllib
from pathlib import Path

from setuptools import find_namespace_packages, setup

ROOT = Path(__file__).parent.resolve()
PYPROJECT = ROOT / "pyproject.toml"

# Load metadata from pyproject.toml
with PYPROJECT.open("rb") as f:
    meta = tomllib.load(f)["tool"]["appseal-meta"]

PKG_NAME = meta["name"]
VERSION = meta["version"]

setup(
    name=PKG_NAME,
    version=VERSION,
    description=meta["description"],
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["appseal", "appseal.*"]),
    install_requires=["rich>=13.0"],
    extras_require={
        "test": ["pytest>=7.0"],
        "dev": ["pytest>=7.0", "ruff>=0.4"],
    },
    entry_points={"console_scripts": ["appseal = appseal.cli:run"]},
)
