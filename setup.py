"""Setup configuration for WhatTrain."""

from setuptools import setup, find_packages

with open("docs/README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="whattrain",
    version="0.1.0",
    description="Identify which NYC subway train a rider is on from live GTFS-Realtime feeds",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Framework :: FastAPI",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.24.0",
        "pandas>=1.3.0",
        "gtfs-realtime-bindings>=0.2.9",
        "protobuf>=3.17.0",
        "fastapi>=0.100.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "uvicorn>=0.22.0",
    ],
    extras_require={
        "dev": ["pytest>=6.0", "black", "flake8"],
        "test": ["pytest>=6.0"],
    },
    entry_points={
        "console_scripts": [
            "whattrain=whattrain.__main__:main",
        ],
    },
)
