"""
setup.py for the mpcpilot package.

Install for development with the test tooling:
    pip install -e ".[dev]"
"""

from setuptools import find_packages, setup

setup(
    name="mpcpilot",
    version="0.1.0",
    description="Model predictive path-tracking controller for a kinematic bicycle",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20",
        "scipy>=1.7",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "hypothesis>=6.0",
            "black>=23.0",
            "ruff>=0.1.0",
            "mypy>=1.0",
        ],
    },
)
