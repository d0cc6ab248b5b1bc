#!/usr/bin/env python3
# =============================================================================
#  errinfer — setup.py
#
#  The version lives in errinfer/__init__.py; runtime requirements live in
#  requirements.txt.  pyproject.toml only declares the build backend and
#  the pytest configuration.
#
#      pip install -e ".[dev]"
#      python -m pytest
# =============================================================================

from __future__ import annotations

import re
from pathlib import Path

from setuptools import setup, find_packages

_HERE = Path(__file__).resolve().parent


def _read_version() -> str:
    """Extract ``__version__`` from the package's ``__init__``."""
    init = _HERE / "errinfer" / "__init__.py"
    text = init.read_text(encoding="utf-8")
    match = re.search(r'^__version__\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match:
        return match.group(1)
    return "0.0.0"


def _read_long_description() -> str:
    readme = _HERE / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


def _read_requirements() -> list[str]:
    """Read requirements.txt if it exists."""
    req_file = _HERE / "requirements.txt"
    if req_file.exists():
        lines = req_file.read_text(encoding="utf-8").splitlines()
        return [
            ln.strip()
            for ln in lines
            if ln.strip() and not ln.strip().startswith("#")
        ]
    return []


setup(
    name="errinfer",
    version=_read_version(),
    description=(
        "Inference of error-reporting conventions (error codes and "
        "reporting calls) of C library functions from their SSA IR."
    ),
    long_description=_read_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    author="errinfer contributors",
    python_requires=">=3.10",
    packages=find_packages(
        include=["errinfer", "errinfer.*"],
        exclude=["tests", "tests.*"],
    ),
    install_requires=_read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Software Development :: Compilers",
    ],
    keywords=[
        "static-analysis",
        "error-handling",
        "ffi",
        "bindings",
        "smt",
        "program-analysis",
    ],
    zip_safe=False,
)
