"""
KBase setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="kbase",
    version="0.1.0",
    description="KBase — Versioned knowledge-base document store",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "kbase=kbase.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "pyyaml>=6.0",
        "httpx>=0.27",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
)
