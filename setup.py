"""Setup script for duckattach."""

from setuptools import find_packages, setup

setup(
    name="duckattach",
    version="0.1.0",
    description="Connection lifecycle manager for DuckDB attachments",
    author="duckattach Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "duckdb>=1.2.0",  # Query engine the sources are attached to
        "requests>=2.28.0",  # HTTP server probes, Google Sheets discovery
        "pyyaml>=6.0",  # Settings, registry and source files
        "typer>=0.12.0",  # CLI framework
        "rich>=13.0.0",  # CLI output
        "python-dotenv>=1.0.0",  # .env loading
        "cryptography>=41.0.0",  # Encrypted secret vault
    ],
    package_data={
        "duckattach": ["py.typed"],
    },
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "black>=22.1.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "autoflake>=2.2.0",
            "pre-commit>=3.0.0",
            "mypy>=1.0.0",  # Type checking
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=4.1.0",
            "mock>=5.0.0",  # For mocking in tests
        ],
    },
    entry_points={
        "console_scripts": [
            "duckattach=duckattach.cli.main:cli",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
